from __future__ import annotations

from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Sequence, Set

from shop_cf.core.constants import behavior_weight
from shop_cf.records import Interaction, Neighbor, ScoredItem, SimilarityRecord


def rank_scores(scores: Dict[int, float], reason: Callable[[float], str]) -> List[ScoredItem]:
    """Score desc, ties by item id asc."""
    ordered = sorted(scores.items(), key=lambda x: (-x[1], x[0]))
    return [ScoredItem(item_id=item_id, score=score, reason=reason(score)) for item_id, score in ordered]


def _user_based_reason(score: float) -> str:
    return f"Popular with shoppers similar to you (score {score:.3f})"


def _item_based_reason(score: float) -> str:
    return f"Similar to items you viewed or bought (score {score:.3f})"


def score_user_based(
    target_interactions: Sequence[Interaction],
    neighbors: Sequence[Neighbor],
    neighbor_interactions: Iterable[Interaction],
) -> List[ScoredItem]:
    """
    Every neighbor event on an item the target never touched contributes
    neighbor.similarity * behavior_weight(action_kind); contributions sum per item.
    Purchased items are a subset of the touched ones, so they never surface.
    """
    seen = {i.item_id for i in target_interactions}
    similarity_by_user = {n.user_id: n.similarity for n in neighbors}

    scores: Dict[int, float] = defaultdict(float)
    for it in neighbor_interactions:
        if it.item_id in seen:
            continue
        similarity = similarity_by_user.get(it.user_id)
        if similarity is None:
            continue
        contrib = similarity * behavior_weight(it.action_kind)
        if contrib <= 0:
            continue
        scores[it.item_id] += contrib

    return rank_scores(scores, _user_based_reason)


def score_item_based(
    recent_interactions: Sequence[Interaction],
    similarity_rows: Iterable[SimilarityRecord],
    *,
    exclude: Set[int] = frozenset(),
) -> List[ScoredItem]:
    """
    For each item-similarity row touching an item from the recent window, the
    other item of the pair accumulates the row's score. Items in the window and
    items in `exclude` (e.g. everything the user ever purchased) are skipped.
    """
    interacted = {i.item_id for i in recent_interactions}
    excluded = interacted | set(exclude)

    scores: Dict[int, float] = defaultdict(float)
    for row in similarity_rows:
        if row.id_a in interacted:
            other = row.id_b
        elif row.id_b in interacted:
            other = row.id_a
        else:
            continue
        if other in excluded:
            continue
        scores[other] += row.score

    return rank_scores(scores, _item_based_reason)
