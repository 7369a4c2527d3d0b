"""Tests for user-based / item-based score aggregation and the hybrid merge."""

from datetime import datetime, timezone

import pytest

from shop_cf.records import Interaction, Neighbor, ScoredItem, SimilarityRecord
from shop_cf.services.hybrid import merge_hybrid
from shop_cf.services.scoring import rank_scores, score_item_based, score_user_based

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def ev(user_id, item_id, kind):
    return Interaction(user_id=user_id, item_id=item_id, action_kind=kind, occurred_at=T0)


def test_user_based_scores_unseen_neighbor_items():
    target = [ev(1, 1, "purchase"), ev(1, 2, "view")]
    neighbors = [Neighbor(user_id=2, similarity=0.5)]
    neighbor_events = [ev(2, 1, "view"), ev(2, 3, "purchase"), ev(2, 4, "add_to_cart")]

    out = score_user_based(target, neighbors, neighbor_events)

    assert [r.item_id for r in out] == [3, 4]
    assert out[0].score == pytest.approx(0.5)
    assert out[1].score == pytest.approx(0.4)
    assert "similar to you" in out[0].reason


def test_user_based_sums_contributions_and_defaults_weight():
    neighbors = [Neighbor(2, 0.5), Neighbor(3, 0.2)]
    events = [ev(2, 7, "view"), ev(2, 7, "favorite"), ev(3, 7, "purchase"), ev(4, 8, "purchase")]

    out = score_user_based([ev(1, 1, "view")], neighbors, events)

    # 0.5*0.5 + 0.5*0.3 + 0.2*1.0; user 4 is not a neighbor
    assert [r.item_id for r in out] == [7]
    assert out[0].score == pytest.approx(0.6)


def test_item_based_credits_other_side_of_pair():
    recent = [ev(1, 1, "purchase"), ev(1, 2, "view")]
    rows = [
        SimilarityRecord(1, 5, 0.8),
        SimilarityRecord(6, 2, 0.4),
        SimilarityRecord(1, 2, 0.9),
        SimilarityRecord(5, 7, 0.9),
        SimilarityRecord(2, 9, 0.3),
    ]

    out = score_item_based(recent, rows, exclude={9})

    assert [(r.item_id, r.score) for r in out] == [(5, pytest.approx(0.8)), (6, pytest.approx(0.4))]


def test_item_based_accumulates_across_rows():
    recent = [ev(1, 1, "view"), ev(1, 2, "view")]
    out = score_item_based(recent, [SimilarityRecord(1, 5, 0.3), SimilarityRecord(2, 5, 0.2)])
    assert out[0].item_id == 5
    assert out[0].score == pytest.approx(0.5)


def test_rank_scores_ties_by_item_id():
    out = rank_scores({9: 0.5, 3: 0.5, 4: 0.7}, lambda s: "r")
    assert [r.item_id for r in out] == [4, 3, 9]


def test_hybrid_weights_and_limit():
    user_based = [ScoredItem(1, 1.0, "u1"), ScoredItem(2, 0.5, "u2")]
    item_based = [ScoredItem(2, 1.0, "i2"), ScoredItem(3, 0.9, "i3")]

    out = merge_hybrid(user_based, item_based, limit=2)

    assert len(out) == 2
    by_id = {r.item_id: r for r in out}
    assert by_id[1].score == pytest.approx(0.6)
    assert by_id[2].score == pytest.approx(0.6 * 0.5 + 0.4 * 1.0)
    assert by_id[2].reason == "u2"


def test_hybrid_equal_scores_keep_insertion_order():
    out = merge_hybrid(
        [ScoredItem(5, 0.5, "u")],
        [ScoredItem(4, 0.5, "i")],
        limit=10,
        user_weight=0.5,
        item_weight=0.5,
    )
    # 0.25 for both; the user-based item was inserted first
    assert [r.item_id for r in out] == [5, 4]


def test_hybrid_zero_limit():
    assert merge_hybrid([ScoredItem(1, 1.0, "u")], [], limit=0) == []
