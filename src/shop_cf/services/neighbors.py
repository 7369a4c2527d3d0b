from __future__ import annotations

import logging
from typing import List, Mapping, Optional, Set

from shop_cf.records import Neighbor
from shop_cf.repositories import InteractionRepository
from shop_cf.services.matrix import jaccard_against

logger = logging.getLogger(__name__)


def select_neighbors(
    scores: Mapping[int, float],
    *,
    target_user_id: int,
    threshold: float,
    limit: int,
) -> List[Neighbor]:
    """
    Keep users scoring strictly above `threshold`, drop the target itself,
    order by similarity desc then user id asc, cut to `limit`.
    """
    kept = [
        Neighbor(user_id=uid, similarity=float(score))
        for uid, score in scores.items()
        if uid != target_user_id and score > threshold
    ]
    kept.sort(key=lambda n: (-n.similarity, n.user_id))
    return kept[:limit]


class NeighborFinder:
    def __init__(
        self,
        interactions: InteractionRepository,
        *,
        threshold: float = 0.1,
        limit: int = 20,
        min_activity: int = 5,
    ):
        self.interactions = interactions
        self.threshold = threshold
        self.limit = limit
        self.min_activity = min_activity

    def find(self, user_id: int, user_items: Set[int], *, limit: Optional[int] = None) -> List[Neighbor]:
        """
        Exhaustive comparison of `user_items` against every user with more
        than `min_activity` interactions.
        """
        if not user_items:
            return []

        candidates = self.interactions.active_user_item_sets(self.min_activity)
        candidates.pop(user_id, None)
        if not candidates:
            return []

        scores = jaccard_against(user_items, candidates)
        neighbors = select_neighbors(
            scores,
            target_user_id=user_id,
            threshold=self.threshold,
            limit=self.limit if limit is None else limit,
        )
        logger.debug(
            "Neighbor search done",
            extra={"user_id": user_id, "candidates": len(candidates), "neighbors": len(neighbors)},
        )
        return neighbors
