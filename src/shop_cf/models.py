from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Float, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from shop_cf.core.time import utcnow
from shop_cf.db import Base


class InteractionEvent(Base):
    __tablename__ = "interaction_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[int] = mapped_column(Integer, nullable=False)
    action_kind: Mapped[str] = mapped_column(String(32), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_ie_user_time", "user_id", "occurred_at"),
        Index("idx_ie_item", "item_id"),
        Index("idx_ie_kind_item", "action_kind", "item_id"),
    )


class UserSimilarity(Base):
    """One row per unordered user pair, user_id_a < user_id_b."""

    __tablename__ = "user_similarities"

    user_id_a: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id_b: Mapped[int] = mapped_column(Integer, primary_key=True)

    score: Mapped[float] = mapped_column(Float, nullable=False)
    algorithm: Mapped[str] = mapped_column(String(32), nullable=False, default="jaccard")
    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("user_id_a < user_id_b", name="ck_us_canonical_pair"),
        CheckConstraint("score >= 0 AND score <= 1", name="ck_us_score_range"),
        Index("idx_us_b", "user_id_b"),
        Index("idx_us_score", "score"),
    )


class ItemSimilarity(Base):
    """One row per unordered item pair, item_id_a < item_id_b."""

    __tablename__ = "item_similarities"

    item_id_a: Mapped[int] = mapped_column(Integer, primary_key=True)
    item_id_b: Mapped[int] = mapped_column(Integer, primary_key=True)

    score: Mapped[float] = mapped_column(Float, nullable=False)
    similarity_kind: Mapped[str] = mapped_column(String(16), nullable=False, default="collaborative")
    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("item_id_a < item_id_b", name="ck_is_canonical_pair"),
        CheckConstraint("score >= 0 AND score <= 1", name="ck_is_score_range"),
        Index("idx_is_b", "item_id_b"),
        Index("idx_is_score", "score"),
    )


class RecommendationImpression(Base):
    __tablename__ = "recommendation_impressions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[int] = mapped_column(Integer, nullable=False)
    recommendation_kind: Mapped[str] = mapped_column(String(16), nullable=False)

    score: Mapped[float] = mapped_column(Float, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    shown: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    clicked: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    purchased: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("user_id", "item_id", "recommendation_kind", name="uq_impression_user_item_kind"),
        Index("idx_ri_user_kind", "user_id", "recommendation_kind"),
    )
