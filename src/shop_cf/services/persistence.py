"""Upserts of similarity snapshots and recommendation impressions.

Pairs are keyed by (smaller id, larger id); a repeated write for the same
pair or the same (user, item, kind) impression updates the row in place.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Sequence

from sqlalchemy import update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker

from shop_cf.core.constants import ITEM_SIMILARITY_KINDS, USER_SIMILARITY_ALGORITHM
from shop_cf.core.errors import InvalidInputError
from shop_cf.core.time import utcnow
from shop_cf.db import session_scope
from shop_cf.models import ItemSimilarity, RecommendationImpression, UserSimilarity
from shop_cf.records import ScoredItem, SimilarityRecord

logger = logging.getLogger(__name__)

# bound parameters per INSERT ... VALUES statement; older SQLite builds cap it at 999
MAX_BIND_PARAMS = 900


def _insert_for(db: Session, model: Any):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"upsert is not supported on dialect {dialect!r}")


def _upsert(
    db: Session,
    model: Any,
    params: list[dict[str, Any]],
    *,
    index_elements: list[str],
    update_columns: list[str],
) -> None:
    if not params:
        return
    chunk_size = max(1, MAX_BIND_PARAMS // len(params[0]))
    for start in range(0, len(params), chunk_size):
        chunk = params[start : start + chunk_size]
        stmt = _insert_for(db, model).values(chunk)
        stmt = stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={col: getattr(stmt.excluded, col) for col in update_columns},
        )
        db.execute(stmt)


def _canonical_rows(records: Iterable[SimilarityRecord]) -> list[tuple[int, int, float]]:
    rows: dict[tuple[int, int], float] = {}
    for r in records:
        if r.id_a == r.id_b:
            continue
        a, b = sorted((r.id_a, r.id_b))
        rows[(a, b)] = min(1.0, max(0.0, float(r.score)))
    return [(a, b, s) for (a, b), s in rows.items()]


class PersistenceWriter:
    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def upsert_user_similarities(
        self,
        records: Iterable[SimilarityRecord],
        *,
        algorithm: str = USER_SIMILARITY_ALGORITHM,
    ) -> int:
        rows = _canonical_rows(records)
        if not rows:
            return 0
        now = utcnow()
        params = [
            {"user_id_a": a, "user_id_b": b, "score": s, "algorithm": algorithm, "computed_at": now}
            for a, b, s in rows
        ]
        with session_scope(self._session_factory, "user similarity upsert") as db:
            _upsert(
                db,
                UserSimilarity,
                params,
                index_elements=["user_id_a", "user_id_b"],
                update_columns=["score", "algorithm", "computed_at"],
            )
            db.commit()
        return len(params)

    def upsert_item_similarities(
        self,
        records: Iterable[SimilarityRecord],
        *,
        similarity_kind: str = "collaborative",
    ) -> int:
        if similarity_kind not in ITEM_SIMILARITY_KINDS:
            raise InvalidInputError(f"unsupported similarity kind: {similarity_kind}")
        rows = _canonical_rows(records)
        if not rows:
            return 0
        now = utcnow()
        params = [
            {"item_id_a": a, "item_id_b": b, "score": s, "similarity_kind": similarity_kind, "computed_at": now}
            for a, b, s in rows
        ]
        with session_scope(self._session_factory, "item similarity upsert") as db:
            _upsert(
                db,
                ItemSimilarity,
                params,
                index_elements=["item_id_a", "item_id_b"],
                update_columns=["score", "similarity_kind", "computed_at"],
            )
            db.commit()
        return len(params)

    def record_impressions(self, user_id: int, recommendation_kind: str, items: Sequence[ScoredItem]) -> int:
        """
        Mark each item as shown to `user_id`. Score and reason are refreshed;
        clicked/purchased flags of an existing row are kept.
        """
        if not items:
            return 0
        now = utcnow()
        params = [
            {
                "user_id": user_id,
                "item_id": it.item_id,
                "recommendation_kind": recommendation_kind,
                "score": float(it.score),
                "reason": it.reason[:255],
                "shown": True,
                "created_at": now,
                "updated_at": now,
            }
            for it in items
        ]
        with session_scope(self._session_factory, "impression upsert") as db:
            _upsert(
                db,
                RecommendationImpression,
                params,
                index_elements=["user_id", "item_id", "recommendation_kind"],
                update_columns=["score", "reason", "shown", "updated_at"],
            )
            db.commit()
        return len(params)

    def set_impression_outcome(self, user_id: int, item_id: int, recommendation_kind: str, outcome: str) -> bool:
        """Returns False when no impression exists for (user, item, kind)."""
        q = (
            update(RecommendationImpression)
            .where(
                RecommendationImpression.user_id == user_id,
                RecommendationImpression.item_id == item_id,
                RecommendationImpression.recommendation_kind == recommendation_kind,
            )
            .values({outcome: True, "updated_at": utcnow()})
        )
        with session_scope(self._session_factory, "impression outcome update") as db:
            result = db.execute(q)
            db.commit()
            updated = (result.rowcount or 0) > 0
        if not updated:
            logger.info(
                "No impression to update",
                extra={"user_id": user_id, "item_id": item_id, "kind": recommendation_kind, "outcome": outcome},
            )
        return updated
