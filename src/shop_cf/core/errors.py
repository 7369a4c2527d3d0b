"""Error taxonomy for the recommendation engine.

An empty recommendation list is a normal outcome, so there is no "no data"
error: callers get ``[]``.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class RecommenderError(Exception):
    """Base exception for engine errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        """
        Args:
            message: Human-readable error message
            status_code: HTTP status code for API responses
            details: Additional error details for debugging
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}


class InvalidInputError(RecommenderError):
    """Raised before any computation when ids, kinds or limits are invalid."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, status_code=400, details=details)


class StoreUnavailableError(RecommenderError):
    """Raised when the relational store cannot be read or written."""

    def __init__(self, operation: str, error: Exception):
        super().__init__(
            message=f"Store unavailable during {operation}: {error}",
            status_code=503,
            details={
                "operation": operation,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )


class CacheUnavailableError(RecommenderError):
    """Raised by cache backends; the cache facade turns it into a miss."""

    def __init__(self, operation: str, error: Exception):
        super().__init__(
            message=f"Cache unavailable during {operation}: {error}",
            status_code=503,
            details={"operation": operation, "error_type": type(error).__name__},
        )
