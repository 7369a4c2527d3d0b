"""Collaborative-filtering recommendation engine for a product catalog."""

__version__ = "0.1.0"
