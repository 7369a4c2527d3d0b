from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from shop_cf.api.deps import verify_internal_key
from shop_cf.api.routes import events, health, impressions, recommend
from shop_cf.config import Settings, get_settings
from shop_cf.core.errors import RecommenderError
from shop_cf.core.logging import RequestLoggingMiddleware, setup_logging
from shop_cf.db import create_db_engine, create_session_factory, init_db
from shop_cf.services.recommend import RecommendationEngine, build_engine

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[RecommendationEngine] = None,
    *,
    db_engine: Optional[Engine] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """
    Build the HTTP app. An engine passed in is used as is; otherwise one is
    wired from settings on startup, over `db_engine` when given.

    Callers that already configured logging pass configure_logging=False.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if configure_logging:
            setup_logging(settings.LOG_LEVEL, json_output=settings.LOG_JSON)
        if app.state.engine is None:
            bind = db_engine if db_engine is not None else create_db_engine(settings.DATABASE_URL)
            try:
                init_db(bind)
            except SQLAlchemyError as e:
                logger.error("Could not create tables, continuing", extra={"error": str(e)})
            app.state.engine = build_engine(settings, create_session_factory(bind))
        logger.info("Recommendation service started")
        yield
        if app.state.engine is not None:
            # drains pending recompute tasks
            app.state.engine.close()
        logger.info("Recommendation service stopped")

    app = FastAPI(title="Shop CF (user/item collaborative filtering)", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine

    @app.exception_handler(RecommenderError)
    async def _recommender_error(request: Request, exc: RecommenderError) -> JSONResponse:
        level = logging.WARNING if exc.status_code < 500 else logging.ERROR
        logger.log(
            level,
            exc.message,
            extra={"path": str(request.url.path), "status_code": exc.status_code, "error_type": type(exc).__name__},
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "details": exc.details})

    app.add_middleware(RequestLoggingMiddleware)

    protected = [Depends(verify_internal_key)]
    app.include_router(health.router, prefix="/api")
    app.include_router(events.router, prefix="/api", dependencies=protected)
    app.include_router(recommend.router, prefix="/api", dependencies=protected)
    app.include_router(impressions.router, prefix="/api", dependencies=protected)
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
