"""Read access to the durable tables, one repository per entity.

Every method opens its own session so repositories can be shared between
request threads and the recompute worker.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, sessionmaker

from shop_cf.db import session_scope
from shop_cf.models import InteractionEvent, ItemSimilarity, RecommendationImpression
from shop_cf.records import Interaction, SimilarityRecord


def _to_interaction(row: InteractionEvent) -> Interaction:
    return Interaction(
        user_id=int(row.user_id),
        item_id=int(row.item_id),
        action_kind=str(row.action_kind),
        occurred_at=row.occurred_at,
    )


class InteractionRepository:
    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def add(self, *, user_id: int, item_id: int, action_kind: str, occurred_at: datetime) -> int:
        with session_scope(self._session_factory, "interaction insert") as db:
            row = InteractionEvent(
                user_id=user_id,
                item_id=item_id,
                action_kind=action_kind,
                occurred_at=occurred_at,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return int(row.id)

    def for_user(self, user_id: int, *, limit: Optional[int] = None) -> list[Interaction]:
        """Most recent first."""
        q = (
            select(InteractionEvent)
            .where(InteractionEvent.user_id == user_id)
            .order_by(InteractionEvent.occurred_at.desc(), InteractionEvent.id.desc())
        )
        if limit is not None:
            q = q.limit(limit)
        with session_scope(self._session_factory, "interaction read") as db:
            return [_to_interaction(r) for r in db.scalars(q).all()]

    def for_users(self, user_ids: Iterable[int]) -> list[Interaction]:
        ids = list(user_ids)
        if not ids:
            return []
        q = (
            select(InteractionEvent)
            .where(InteractionEvent.user_id.in_(ids))
            .order_by(InteractionEvent.occurred_at.desc(), InteractionEvent.id.desc())
        )
        with session_scope(self._session_factory, "interaction read") as db:
            return [_to_interaction(r) for r in db.scalars(q).all()]

    def items_for_user(self, user_id: int) -> set[int]:
        q = select(InteractionEvent.item_id).where(InteractionEvent.user_id == user_id).distinct()
        with session_scope(self._session_factory, "interaction read") as db:
            return {int(r) for r in db.scalars(q).all()}

    def users_for_item(self, item_id: int) -> set[int]:
        q = select(InteractionEvent.user_id).where(InteractionEvent.item_id == item_id).distinct()
        with session_scope(self._session_factory, "interaction read") as db:
            return {int(r) for r in db.scalars(q).all()}

    def purchased_items(self, user_id: int) -> set[int]:
        q = (
            select(InteractionEvent.item_id)
            .where(InteractionEvent.user_id == user_id, InteractionEvent.action_kind == "purchase")
            .distinct()
        )
        with session_scope(self._session_factory, "interaction read") as db:
            return {int(r) for r in db.scalars(q).all()}

    def active_user_item_sets(self, min_count: int) -> dict[int, set[int]]:
        """Item sets of every user with more than `min_count` interactions."""
        active = (
            select(InteractionEvent.user_id)
            .group_by(InteractionEvent.user_id)
            .having(func.count() > min_count)
        )
        q = (
            select(InteractionEvent.user_id, InteractionEvent.item_id)
            .where(InteractionEvent.user_id.in_(active))
            .distinct()
        )
        sets: dict[int, set[int]] = defaultdict(set)
        with session_scope(self._session_factory, "active users read") as db:
            for user_id, item_id in db.execute(q).all():
                sets[int(user_id)].add(int(item_id))
        return dict(sets)

    def active_item_user_sets(self, min_count: int) -> dict[int, set[int]]:
        """User sets of every item with more than `min_count` interactions."""
        active = (
            select(InteractionEvent.item_id)
            .group_by(InteractionEvent.item_id)
            .having(func.count() > min_count)
        )
        q = (
            select(InteractionEvent.item_id, InteractionEvent.user_id)
            .where(InteractionEvent.item_id.in_(active))
            .distinct()
        )
        sets: dict[int, set[int]] = defaultdict(set)
        with session_scope(self._session_factory, "active items read") as db:
            for item_id, user_id in db.execute(q).all():
                sets[int(item_id)].add(int(user_id))
        return dict(sets)

    def purchase_counts(self, *, limit: int, item_ids: Optional[Iterable[int]] = None) -> list[tuple[int, int]]:
        """(item_id, purchases) by purchases desc, item id asc; optionally only among `item_ids`."""
        cnt = func.count().label("cnt")
        q = select(InteractionEvent.item_id, cnt).where(InteractionEvent.action_kind == "purchase")
        if item_ids is not None:
            ids = list(set(item_ids))
            if not ids:
                return []
            q = q.where(InteractionEvent.item_id.in_(ids))
        q = (
            q.group_by(InteractionEvent.item_id)
            .order_by(cnt.desc(), InteractionEvent.item_id.asc())
            .limit(limit)
        )
        with session_scope(self._session_factory, "popular items read") as db:
            return [(int(item_id), int(c)) for item_id, c in db.execute(q).all()]


class ItemSimilarityRepository:
    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def rows_touching(self, item_ids: Iterable[int], *, threshold: float, limit: int) -> list[SimilarityRecord]:
        """Rows with either side in `item_ids` and score > threshold, highest first."""
        ids = list(set(item_ids))
        if not ids:
            return []
        q = (
            select(ItemSimilarity)
            .where(
                or_(ItemSimilarity.item_id_a.in_(ids), ItemSimilarity.item_id_b.in_(ids)),
                ItemSimilarity.score > threshold,
            )
            .order_by(ItemSimilarity.score.desc(), ItemSimilarity.item_id_a, ItemSimilarity.item_id_b)
            .limit(limit)
        )
        with session_scope(self._session_factory, "item similarity read") as db:
            return [
                SimilarityRecord(
                    id_a=int(r.item_id_a),
                    id_b=int(r.item_id_b),
                    score=float(r.score),
                    computed_at=r.computed_at,
                )
                for r in db.scalars(q).all()
            ]


class ImpressionRepository:
    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def for_user(
        self,
        user_id: int,
        *,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> list[RecommendationImpression]:
        """Impressions of `user_id` created within [since, until]; either bound may be open."""
        q = select(RecommendationImpression).where(RecommendationImpression.user_id == user_id)
        if since is not None:
            q = q.where(RecommendationImpression.created_at >= since)
        if until is not None:
            q = q.where(RecommendationImpression.created_at <= until)
        q = q.order_by(RecommendationImpression.id)
        with session_scope(self._session_factory, "impression read") as db:
            rows = list(db.scalars(q).all())
            db.expunge_all()
            return rows
