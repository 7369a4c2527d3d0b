"""End-to-end tests of RecommendationEngine against a SQLite store."""

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from shop_cf.core.errors import InvalidInputError, StoreUnavailableError
from shop_cf.records import SimilarityRecord
from shop_cf.services.recommend import build_engine

U, N, OTHER = 1, 2, 3
P1, P2, P3, P4 = 101, 102, 103, 104


@pytest.fixture
def neighborhood(add_events):
    """U purchased P1 and viewed P2; N shares both, purchased P3 and viewed P4 (Jaccard 0.5)."""
    add_events(
        (U, P1, "purchase"),
        (U, P2, "view"),
        (N, P1, "view"),
        (N, P2, "view"),
        (N, P3, "purchase"),
        (N, P4, "view"),
    )


def test_user_based_scenario(engine, neighborhood):
    recs = engine.get_recommendations(U, "user-based", 10)

    scores = {r.item_id: r.score for r in recs}
    assert scores[P3] == pytest.approx(0.5)
    assert scores[P4] == pytest.approx(0.25)
    assert P1 not in scores
    assert P2 not in scores
    assert [r.item_id for r in recs] == [P3, P4]


def test_similar_users_excludes_target(engine, neighborhood, add_events):
    add_events((OTHER, 999, "view"))

    neighbors = engine.get_similar_users(U)

    assert [n.user_id for n in neighbors] == [N]
    assert neighbors[0].similarity == pytest.approx(0.5)


def test_zero_interactions_yield_empty_lists(engine):
    for strategy in ("user-based", "item-based", "hybrid"):
        assert engine.get_recommendations(42, strategy, 10) == []
    assert engine.get_similar_users(42) == []
    assert engine.get_similar_items(42) == []
    assert engine.get_popular_items() == []


def test_item_based_uses_other_side_and_excludes_purchases(engine, add_events, writer):
    add_events((U, P1, "purchase"), (U, P2, "view"))
    writer.upsert_item_similarities(
        [
            SimilarityRecord(P1, P3, 0.8),
            SimilarityRecord(P4, P2, 0.4),
            SimilarityRecord(P1, P2, 0.9),
            SimilarityRecord(P2, 105, 0.05),
        ]
    )

    recs = engine.get_recommendations(U, "item-based", 10)

    assert [(r.item_id, r.score) for r in recs] == [(P3, pytest.approx(0.8)), (P4, pytest.approx(0.4))]


def test_item_based_excludes_purchases_outside_recent_window(settings, session_factory, cache, add_events, writer):
    add_events((U, P3, "purchase"), (U, P1, "view"), (U, P2, "view"))
    writer.upsert_item_similarities([SimilarityRecord(P1, P3, 0.9), SimilarityRecord(P2, P4, 0.5)])
    eng = build_engine(settings.model_copy(update={"RECENT_INTERACTIONS": 2}), session_factory, cache=cache)
    try:
        recs = eng.get_recommendations(U, "item-based", 10)
    finally:
        eng.close()
    assert [r.item_id for r in recs] == [P4]


def test_hybrid_merges_both_lists(engine, neighborhood, writer):
    writer.upsert_item_similarities([SimilarityRecord(P1, P3, 0.5), SimilarityRecord(P2, 105, 0.9)])

    recs = engine.get_recommendations(U, "hybrid", 2)

    assert len(recs) == 2
    scores = {r.item_id: r.score for r in recs}
    # 105: item-based only; P3: both lists
    assert scores[105] == pytest.approx(0.4 * 0.9)
    assert scores[P3] == pytest.approx(0.6 * 0.5 + 0.4 * 0.5)
    assert [r.item_id for r in recs] == [P3, 105]


def test_purchased_items_never_recommended(engine, neighborhood, writer, add_events):
    add_events((U, P3, "purchase"))
    writer.upsert_item_similarities([SimilarityRecord(P2, P3, 0.9)])
    for strategy in ("user-based", "item-based", "hybrid"):
        ids = {r.item_id for r in engine.get_recommendations(U, strategy, 10)}
        assert P1 not in ids
        assert P3 not in ids


def test_results_are_cached_until_feedback(engine, neighborhood, cache):
    first = engine.get_recommendations(U, "user-based", 10)
    assert cache.get_recommendations(U, "user-based", 10) == first

    with patch.object(engine, "_compute") as compute:
        assert engine.get_recommendations(U, "user-based", 10) == first
        compute.assert_not_called()


def test_recorded_interaction_is_excluded_on_next_call(engine, neighborhood):
    assert P3 in {r.item_id for r in engine.get_recommendations(U, "user-based", 10)}

    engine.record_interaction(U, P3, "view")
    assert engine.cache.get_recommendations(U, "user-based", 10) is None
    engine.feedback.worker.join(timeout=10)

    assert P3 not in {r.item_id for r in engine.get_recommendations(U, "user-based", 10)}


def test_invalidation_during_computation_is_not_overwritten(engine, neighborhood):
    compute = engine._compute

    def racing(*args, **kwargs):
        items = compute(*args, **kwargs)
        # feedback lands after the list was computed but before it is cached
        engine.record_interaction(U, P3, "purchase")
        return items

    with patch.object(engine, "_compute", side_effect=racing):
        stale = engine.get_recommendations(U, "user-based", 10)
    assert P3 in {r.item_id for r in stale}
    engine.feedback.worker.join(timeout=10)

    assert P3 not in {r.item_id for r in engine.get_recommendations(U, "user-based", 10)}


def test_record_interaction_validates_before_writing(engine, interactions):
    with pytest.raises(InvalidInputError):
        engine.record_interaction(0, P1, "view")
    with pytest.raises(InvalidInputError):
        engine.record_interaction(U, P1, "wishlist")
    assert interactions.for_user(U) == []

    inserted = engine.record_interaction(U, P1, " Favorite ")
    assert inserted > 0
    assert interactions.for_user(U)[0].action_kind == "favorite"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"user_id": -1},
        {"user_id": True},
        {"strategy": "content"},
        {"limit": 0},
        {"limit": 101},
    ],
)
def test_get_recommendations_rejects_invalid_input(engine, kwargs):
    args = {"user_id": U, "strategy": "hybrid", "limit": 10, **kwargs}
    with pytest.raises(InvalidInputError):
        engine.get_recommendations(args["user_id"], args["strategy"], args["limit"])


def test_store_failure_degrades_to_empty_list(engine, neighborhood, caplog):
    err = StoreUnavailableError("interaction read", RuntimeError("server closed the connection"))
    with patch.object(engine.interactions, "for_user", side_effect=err):
        with caplog.at_level(logging.WARNING, logger="shop_cf.services.recommend"):
            assert engine.get_recommendations(U, "hybrid", 10) == []
    assert any("degraded" in r.getMessage() for r in caplog.records)


def test_write_failures_propagate(engine):
    err = StoreUnavailableError("interaction insert", RuntimeError("read-only transaction"))
    with patch.object(engine.interactions, "add", side_effect=err):
        with pytest.raises(StoreUnavailableError) as exc_info:
            engine.record_interaction(U, P1, "view")
    assert exc_info.value.status_code == 503


def test_pairwise_similarity(engine, add_events):
    add_events(
        (1, P1, "view"), (1, P2, "view"), (1, P3, "view"),
        (2, P1, "purchase"), (2, P2, "view"), (2, P3, "add_to_cart"),
        (3, P4, "view"),
    )
    assert engine.pairwise_similarity(1, 2, "user") == pytest.approx(1.0)
    assert engine.pairwise_similarity(2, 1, "user") == pytest.approx(1.0)
    assert engine.pairwise_similarity(1, 3, "user") == 0.0
    assert engine.pairwise_similarity(P1, P4, "item") == 0.0
    assert 0.0 <= engine.pairwise_similarity(P1, P2, "item") <= 1.0


def test_similar_items_from_recomputed_rows(engine, neighborhood):
    engine.feedback.recomputer.recompute_item(P1)

    similar = engine.get_similar_items(P1, 5)

    # P1 users {U, N}; P2 {U, N}; P3 and P4 {N}
    assert [s.item_id for s in similar] == [P2, P3, P4]
    assert similar[0].score == pytest.approx(1.0)
    assert similar[1].score == pytest.approx(2 ** -0.5)
    assert similar[0].reason == f"100.0% similar to item {P1}"


def test_popular_items_by_purchase_count(engine, add_events):
    add_events((1, P2, "purchase"), (2, P2, "purchase"), (3, P1, "purchase"), (4, P3, "purchase"), (5, P4, "view"))

    popular = engine.get_popular_items(2)

    assert [p.item_id for p in popular] == [P2, P1]
    assert all(p.score == 0.5 for p in popular)
    assert popular[0].reason == "Popular item, purchased 2 times"


def test_impressions_and_stats(engine, neighborhood):
    recs = engine.get_recommendations(U, "user-based", 10)
    assert len(recs) == 2

    assert engine.record_impression_outcome(U, P3, "user-based", "clicked") is True
    assert engine.record_impression_outcome(U, P3, "user-based", "purchased") is True
    assert engine.record_impression_outcome(U, P4, "hybrid", "clicked") is False

    stats = engine.get_impression_stats(U)
    assert stats.total == 2
    assert stats.overall.shown == 2
    assert stats.overall.clicked == 1
    assert stats.overall.purchased == 1
    assert stats.overall.click_rate == pytest.approx(50.0)
    assert set(stats.by_kind) == {"user-based"}


def test_impression_outcome_validates(engine):
    with pytest.raises(InvalidInputError):
        engine.record_impression_outcome(U, P1, "hybrid", "liked")
    with pytest.raises(InvalidInputError):
        engine.record_impression_outcome(U, P1, "trending", "clicked")


def test_impressions_can_be_skipped(engine, neighborhood):
    engine.get_recommendations(U, "user-based", 10, record_impressions=False)
    assert engine.get_impression_stats(U).total == 0


def test_impression_stats_window(engine, neighborhood):
    engine.get_recommendations(U, "user-based", 10)
    now = datetime.now(timezone.utc)

    assert engine.get_impression_stats(U, since=now - timedelta(days=1)).total == 2
    assert engine.get_impression_stats(U, since=now + timedelta(hours=1)).total == 0
    assert engine.get_impression_stats(U, until=now - timedelta(days=1)).total == 0
    # naive bounds are read as UTC
    naive = (now - timedelta(days=1)).replace(tzinfo=None)
    assert engine.get_impression_stats(U, since=naive, until=naive + timedelta(days=2)).total == 2

    with pytest.raises(InvalidInputError):
        engine.get_impression_stats(U, since=now, until=now - timedelta(seconds=1))


def test_evaluate_shown_recommendations(engine, neighborhood, add_events):
    engine.get_recommendations(U, "user-based", 10)
    engine.record_impression_outcome(U, P3, "user-based", "clicked")
    engine.record_impression_outcome(U, P3, "user-based", "purchased")

    result = engine.evaluate(U)

    assert result.shown == 2
    assert result.accuracy == pytest.approx(100.0)
    assert result.click_rate == pytest.approx(50.0)
    assert result.purchase_rate == pytest.approx(50.0)
    # P3 is the only purchased item among those shown, so only P4 is novel
    assert result.novelty == pytest.approx(50.0)
    assert result.serendipity == pytest.approx(100.0)

    add_events((U, P4, "view"))
    assert engine.evaluate(U).serendipity == pytest.approx(50.0)


def test_evaluate_without_impressions(engine):
    result = engine.evaluate(U)

    assert result.shown == 0
    assert (result.accuracy, result.novelty, result.serendipity) == (0.0, 0.0, 0.0)

    with pytest.raises(InvalidInputError):
        engine.evaluate(0)


def test_evaluate_respects_window(engine, neighborhood):
    engine.get_recommendations(U, "user-based", 10)
    later = datetime.now(timezone.utc) + timedelta(hours=1)

    assert engine.evaluate(U, since=later).shown == 0
    assert engine.evaluate(U, until=later).shown == 2
