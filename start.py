#!/usr/bin/env python3
"""
Start script for the Shop CF service.
Run: python start.py
"""

from __future__ import annotations

import logging
import os
import sys

import uvicorn
from sqlalchemy import text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError

from shop_cf.api.main import create_app
from shop_cf.config import get_settings
from shop_cf.core.logging import setup_logging
from shop_cf.db import create_db_engine

logger = logging.getLogger("shop_cf.start")


def mask_password(password: str) -> str:
    # keep the first and last two characters only
    if len(password) > 4:
        return password[:2] + "*" * (len(password) - 4) + password[-2:]
    if password:
        return "*" * len(password)
    return "(empty)"


def describe_database_url(url: str, show_password: bool = False) -> dict[str, str]:
    """Connection details of DATABASE_URL, password masked unless asked otherwise."""
    try:
        u = make_url(url)
    except ArgumentError as e:
        return {"error": str(e), "raw_url": url[:50] + "..." if len(url) > 50 else url}

    password = u.password or ""
    shown = password if show_password else mask_password(password)
    return {
        "scheme": u.drivername,
        "user": u.username or "(none)",
        "password": shown,
        "host": u.host or "(none)",
        "port": str(u.port or ""),
        "database": u.database or "(none)",
        "full_masked": u.set(password=mask_password(password) if password else None).render_as_string(
            hide_password=False
        ),
    }


def check_database_connection(engine: Engine) -> bool:
    """Round-trip a SELECT 1. Tables are created by the app on startup."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        msg = str(e).lower()
        logger.error("Database connection failed", extra={"error": str(e)})
        if "password authentication failed" in msg:
            logger.error("Check the password in .env; URL-encode special characters (@ -> %40, # -> %23)")
        elif "could not connect" in msg or "connection refused" in msg:
            logger.error("Check host/port in DATABASE_URL and that the server is running")
        return False


def main() -> None:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, json_output=settings.LOG_JSON)

    debug_mode = os.getenv("DEBUG", "").lower() in ("1", "true", "yes")
    logger.info("Starting Shop CF service", extra={"database": describe_database_url(settings.DATABASE_URL, debug_mode)})
    logger.info(
        "Cache backend",
        extra={"backend": "redis" if settings.REDIS_URL else "memory", "ttl_seconds": settings.CACHE_TTL_SECONDS},
    )

    db_engine = create_db_engine(settings.DATABASE_URL)
    if not check_database_connection(db_engine):
        logger.warning("Service will start but requests touching the store will fail until it is reachable")

    try:
        app = create_app(settings, db_engine=db_engine, configure_logging=False)
        uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")), log_level="info")
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except OSError as e:
        logger.error("Server error", extra={"error": str(e)})
        sys.exit(1)


if __name__ == "__main__":
    main()
