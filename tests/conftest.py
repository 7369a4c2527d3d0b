"""Shared fixtures: a file-backed SQLite store per test and an in-process cache.

A file (not :memory:) is used so the recompute worker threads open their own
connections to the same database.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from shop_cf.config import Settings
from shop_cf.db import create_db_engine, create_session_factory, init_db
from shop_cf.repositories import InteractionRepository
from shop_cf.services.cache import MemoryCache, SimilarityCache
from shop_cf.services.persistence import PersistenceWriter
from shop_cf.services.recommend import build_engine

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite:///{tmp_path / 'shop_cf.db'}",
        REDIS_URL="",
        MIN_USER_ACTIVITY=0,
        MIN_ITEM_ACTIVITY=0,
        RECOMPUTE_BACKOFF=0.0,
        INTERNAL_SHARED_SECRET="",
        LOG_JSON=False,
    )


@pytest.fixture
def session_factory(settings):
    db_engine = create_db_engine(settings.DATABASE_URL)
    init_db(db_engine)
    yield create_session_factory(db_engine)
    db_engine.dispose()


@pytest.fixture
def memory_backend():
    return MemoryCache()


@pytest.fixture
def cache(memory_backend):
    return SimilarityCache(memory_backend, ttl_seconds=60)


@pytest.fixture
def interactions(session_factory):
    return InteractionRepository(session_factory)


@pytest.fixture
def writer(session_factory):
    return PersistenceWriter(session_factory)


@pytest.fixture
def engine(settings, session_factory, cache):
    eng = build_engine(settings, session_factory, cache=cache)
    yield eng
    eng.feedback.worker.join(timeout=10)
    eng.close()


@pytest.fixture
def add_events(interactions):
    """
    Insert events straight into the store, bypassing feedback handling.

    Each event is (user_id, item_id, action_kind); timestamps increase with
    position so the last event is the most recent.
    """
    counter = {"n": 0}

    def _add(*events):
        for user_id, item_id, kind in events:
            counter["n"] += 1
            interactions.add(
                user_id=user_id,
                item_id=item_id,
                action_kind=kind,
                occurred_at=BASE_TIME + timedelta(minutes=counter["n"]),
            )

    return _add
