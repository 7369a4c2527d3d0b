from __future__ import annotations

import logging
from typing import Dict, List, Sequence

from shop_cf.records import ScoredItem

logger = logging.getLogger(__name__)

DEFAULT_USER_WEIGHT = 0.6
DEFAULT_ITEM_WEIGHT = 0.4


def merge_hybrid(
    user_based: Sequence[ScoredItem],
    item_based: Sequence[ScoredItem],
    *,
    limit: int,
    user_weight: float = DEFAULT_USER_WEIGHT,
    item_weight: float = DEFAULT_ITEM_WEIGHT,
) -> List[ScoredItem]:
    """
    Weighted sum of both lists, deduplicated by item:
    score = user_weight * user_score + item_weight * item_score
    (a missing side contributes 0).

    Insertion order is user-based first, then items only the item-based list
    has; the stable sort keeps that order among equal scores.
    """
    if limit <= 0:
        return []

    merged: Dict[int, float] = {}
    reasons: Dict[int, str] = {}

    for rec in user_based:
        merged[rec.item_id] = merged.get(rec.item_id, 0.0) + rec.score * user_weight
        reasons.setdefault(rec.item_id, rec.reason)

    for rec in item_based:
        merged[rec.item_id] = merged.get(rec.item_id, 0.0) + rec.score * item_weight
        reasons.setdefault(rec.item_id, rec.reason)

    ordered = sorted(merged.items(), key=lambda x: x[1], reverse=True)[:limit]
    logger.debug(
        "Merged hybrid list",
        extra={"user_based": len(user_based), "item_based": len(item_based), "returned": len(ordered)},
    )
    return [ScoredItem(item_id=item_id, score=score, reason=reasons[item_id]) for item_id, score in ordered]
