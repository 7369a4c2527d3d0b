from __future__ import annotations

from fastapi import APIRouter

from shop_cf import __version__


router = APIRouter()


@router.get("/health")
def health() -> dict:
    return {"status": "ok", "version": __version__}
