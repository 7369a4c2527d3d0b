from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from shop_cf.core.errors import StoreUnavailableError


class Base(DeclarativeBase):
    pass


def _normalize_database_url(url: str) -> str:
    """
    Accept either:
    - postgresql://... (common in hosted providers)
    - postgresql+psycopg://... (SQLAlchemy explicit driver form)
    - sqlite:///...
    and normalize Postgres URLs to use psycopg driver.
    """
    u = make_url(url)
    if u.drivername == "postgresql":
        u = u.set(drivername="postgresql+psycopg")
    return u.render_as_string(hide_password=False)


def create_db_engine(url: str) -> Engine:
    normalized = _normalize_database_url(url)
    if normalized.startswith("sqlite"):
        # recompute worker threads share the database with request threads
        return create_engine(normalized, future=True, connect_args={"check_same_thread": False})
    return create_engine(normalized, future=True, pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    # Import models so they are registered on Base.metadata
    from shop_cf import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


@contextmanager
def session_scope(session_factory: sessionmaker[Session], operation: str) -> Iterator[Session]:
    """Open a session and translate driver/ORM failures into StoreUnavailableError."""
    try:
        with session_factory() as db:
            yield db
    except SQLAlchemyError as e:
        raise StoreUnavailableError(operation, e) from e
