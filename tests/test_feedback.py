"""Tests for the recompute worker, similarity recomputation and feedback handling."""

import logging

import pytest
from sqlalchemy import select

from shop_cf.core.errors import StoreUnavailableError
from shop_cf.models import ItemSimilarity, UserSimilarity
from shop_cf.records import ScoredItem
from shop_cf.services.feedback import FeedbackHandler, RecomputeWorker, SimilarityRecomputer


def _store_error():
    return StoreUnavailableError("similarity upsert", RuntimeError("database is locked"))


@pytest.fixture
def worker():
    w = RecomputeWorker(max_workers=1, max_retries=3, backoff_seconds=0.5, sleep=lambda s: None)
    yield w
    w.shutdown()


@pytest.fixture
def recomputer(interactions, writer, cache):
    return SimilarityRecomputer(interactions, writer, cache, min_user_activity=0, min_item_activity=0)


def test_worker_retries_store_errors_with_backoff():
    sleeps = []
    worker = RecomputeWorker(max_workers=1, max_retries=3, backoff_seconds=0.5, sleep=sleeps.append)
    calls = {"n": 0}

    def flaky():
        calls["n"] += 1
        if calls["n"] < 3:
            raise _store_error()

    try:
        assert worker.submit("flaky", flaky).result(timeout=5) is True
    finally:
        worker.shutdown()
    assert calls["n"] == 3
    assert sleeps == [0.5, 1.0]


def test_worker_gives_up_after_max_retries(worker, caplog):
    def always_down():
        raise _store_error()

    with caplog.at_level(logging.WARNING, logger="shop_cf.services.feedback"):
        assert worker.submit("down", always_down).result(timeout=5) is False

    messages = [r.getMessage() for r in caplog.records]
    assert messages.count("Recompute task failed, retrying") == 2
    assert "Recompute task failed after retries" in messages


def test_worker_logs_unexpected_errors_without_retry(worker, caplog):
    calls = {"n": 0}

    def broken():
        calls["n"] += 1
        raise ValueError("bad data")

    with caplog.at_level(logging.ERROR, logger="shop_cf.services.feedback"):
        assert worker.submit("broken", broken).result(timeout=5) is False
    assert calls["n"] == 1
    assert any(r.getMessage() == "Recompute task crashed" for r in caplog.records)


def test_worker_join_and_rejects_after_shutdown():
    worker = RecomputeWorker(max_workers=2)
    results = []
    for i in range(5):
        worker.submit(f"t{i}", results.append, i)
    assert worker.join(timeout=5) is True
    assert sorted(results) == [0, 1, 2, 3, 4]

    worker.shutdown()
    assert worker.submit("late", results.append, 99) is None


def test_recompute_user_persists_and_caches(session_factory, add_events, recomputer, cache):
    add_events((1, 1, "view"), (1, 2, "view"), (2, 1, "view"), (2, 2, "view"), (2, 3, "view"), (2, 4, "view"), (3, 9, "view"))

    assert recomputer.recompute_user(1) == 2

    with session_factory() as db:
        rows = {(r.user_id_a, r.user_id_b): r.score for r in db.scalars(select(UserSimilarity)).all()}
    assert rows == {(1, 2): pytest.approx(0.5), (1, 3): 0.0}
    assert cache.get_similarity("user", 2, 1) == pytest.approx(0.5)


def test_recompute_is_stable_over_unchanged_data(session_factory, add_events, recomputer):
    add_events((1, 1, "purchase"), (2, 1, "view"), (3, 1, "view"), (3, 2, "view"))

    recomputer.recompute_item(1)
    with session_factory() as db:
        first = {(r.item_id_a, r.item_id_b): r.score for r in db.scalars(select(ItemSimilarity)).all()}
    recomputer.recompute_item(1)
    with session_factory() as db:
        second = {(r.item_id_a, r.item_id_b): r.score for r in db.scalars(select(ItemSimilarity)).all()}

    # item 1 has users {1,2,3}, item 2 has {3}: 1 / sqrt(3)
    assert first == second
    assert first[(1, 2)] == pytest.approx(3 ** -0.5)


def test_recompute_respects_activity_floor(interactions, writer, cache, add_events):
    add_events((1, 1, "view"), (2, 1, "view"), (2, 2, "view"))
    strict = SimilarityRecomputer(interactions, writer, cache, min_user_activity=5, min_item_activity=3)
    assert strict.recompute_user(1) == 0
    assert strict.recompute_item(1) == 0


def test_feedback_ignores_non_feedback_kinds(cache, recomputer, worker):
    cache.set_recommendations(1, "hybrid", 10, [ScoredItem(5, 0.5, "r")])
    handler = FeedbackHandler(cache, recomputer, worker)

    assert handler.on_interaction(1, 5, "favorite") is None
    assert cache.get_recommendations(1, "hybrid", 10) is not None


def test_feedback_invalidates_then_recomputes(session_factory, add_events, cache, recomputer, worker):
    add_events((1, 1, "view"), (2, 1, "purchase"))
    cache.set_recommendations(1, "hybrid", 10, [ScoredItem(5, 0.5, "r")])
    handler = FeedbackHandler(cache, recomputer, worker)

    fut = handler.on_interaction(1, 1, "purchase")

    assert cache.get_recommendations(1, "hybrid", 10) is None
    assert fut.result(timeout=10) is True
    with session_factory() as db:
        assert db.scalars(select(UserSimilarity)).all()
