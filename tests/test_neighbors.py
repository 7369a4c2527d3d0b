"""Tests for neighbor selection."""

import pytest

from shop_cf.services.neighbors import NeighborFinder, select_neighbors


class FakeInteractions:
    def __init__(self, sets):
        self.sets = sets
        self.min_counts = []

    def active_user_item_sets(self, min_count):
        self.min_counts.append(min_count)
        return {uid: set(items) for uid, items in self.sets.items()}


def test_select_neighbors_filters_sorts_and_caps():
    scores = {1: 0.9, 2: 0.1, 3: 0.5, 4: 0.5, 5: 0.05, 9: 1.0}
    out = select_neighbors(scores, target_user_id=9, threshold=0.1, limit=3)

    assert [n.user_id for n in out] == [1, 3, 4]
    assert all(n.user_id != 9 for n in out)
    # threshold is strict
    assert 2 not in {n.user_id for n in out}


def test_finder_never_returns_target():
    repo = FakeInteractions({1: {1, 2}, 2: {1, 2}, 3: {1}})
    finder = NeighborFinder(repo, threshold=0.1, limit=20, min_activity=5)

    out = finder.find(1, {1, 2})

    assert [n.user_id for n in out] == [2, 3]
    assert out[0].similarity == pytest.approx(1.0)
    assert out[1].similarity == pytest.approx(0.5)
    assert repo.min_counts == [5]


def test_finder_limit_override():
    repo = FakeInteractions({2: {1}, 3: {1, 2}, 4: {2}})
    finder = NeighborFinder(repo, threshold=0.0, limit=20, min_activity=0)
    assert len(finder.find(1, {1, 2}, limit=1)) == 1
    assert len(finder.find(1, {1, 2})) == 3


def test_finder_empty_user_returns_nothing():
    repo = FakeInteractions({2: {1}})
    finder = NeighborFinder(repo)
    assert finder.find(1, set()) == []
    assert repo.min_counts == []
