"""User-user and item-item similarity.

Users are compared by Jaccard over the items they touched; items by the
overlap of their users divided by the geometric mean of the user counts.
Action kind is ignored by both.
"""

from __future__ import annotations

import logging
from math import sqrt
from typing import Set, Tuple

from shop_cf.core.constants import ENTITY_ITEM, ENTITY_KINDS, ENTITY_USER
from shop_cf.core.errors import InvalidInputError
from shop_cf.repositories import InteractionRepository
from shop_cf.services.cache import SimilarityCache

logger = logging.getLogger(__name__)


def canonical_pair(id_a: int, id_b: int) -> Tuple[int, int]:
    return (id_a, id_b) if id_a <= id_b else (id_b, id_a)


def _clamp(x: float) -> float:
    return min(1.0, max(0.0, x))


def jaccard_similarity(a: Set[int], b: Set[int]) -> float:
    if not a or not b:
        return 0.0
    union = len(a | b)
    return _clamp(len(a & b) / union)


def overlap_cosine_similarity(a: Set[int], b: Set[int]) -> float:
    if not a or not b:
        return 0.0
    return _clamp(len(a & b) / sqrt(len(a) * len(b)))


class SimilarityCalculator:
    def __init__(self, interactions: InteractionRepository, cache: SimilarityCache):
        self.interactions = interactions
        self.cache = cache

    def user_similarity(self, user_id_a: int, user_id_b: int) -> float:
        cached = self.cache.get_similarity(ENTITY_USER, user_id_a, user_id_b)
        if cached is not None:
            return cached

        a, b = canonical_pair(user_id_a, user_id_b)
        score = jaccard_similarity(self.interactions.items_for_user(a), self.interactions.items_for_user(b))
        logger.debug("Computed user similarity", extra={"pair": [a, b], "score": score})
        self.cache.set_similarity(ENTITY_USER, a, b, score)
        return score

    def item_similarity(self, item_id_a: int, item_id_b: int) -> float:
        cached = self.cache.get_similarity(ENTITY_ITEM, item_id_a, item_id_b)
        if cached is not None:
            return cached

        a, b = canonical_pair(item_id_a, item_id_b)
        score = overlap_cosine_similarity(self.interactions.users_for_item(a), self.interactions.users_for_item(b))
        logger.debug("Computed item similarity", extra={"pair": [a, b], "score": score})
        self.cache.set_similarity(ENTITY_ITEM, a, b, score)
        return score

    def similarity(self, id_a: int, id_b: int, entity_kind: str) -> float:
        kind = entity_kind.strip().lower()
        if kind not in ENTITY_KINDS:
            raise InvalidInputError(f"unsupported entity kind: {entity_kind}", {"entity_kind": entity_kind})
        if kind == ENTITY_USER:
            return self.user_similarity(id_a, id_b)
        return self.item_similarity(id_a, id_b)
