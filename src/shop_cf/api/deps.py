"""Dependencies for API routes."""

from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException, Request

from shop_cf.config import Settings
from shop_cf.services.recommend import RecommendationEngine


def get_engine(request: Request) -> RecommendationEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Recommendation engine is not ready")
    return engine


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def verify_internal_key(request: Request, x_internal_key: Optional[str] = Header(default=None)) -> bool:
    """
    Protect the internal API with a shared secret.

    - Requests must carry header `x-internal-key: <INTERNAL_SHARED_SECRET>`
    - When INTERNAL_SHARED_SECRET is empty the check is disabled (local dev, tests)
    """
    secret = get_app_settings(request).INTERNAL_SHARED_SECRET
    if not secret:
        return True
    if x_internal_key != secret:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return True


__all__ = ["get_app_settings", "get_engine", "verify_internal_key"]
