from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class InteractionEventIn(BaseModel):
    user_id: int = Field(..., ge=1)
    item_id: int = Field(..., ge=1)
    action_kind: str
    occurred_at: Optional[datetime] = None


class IngestResponse(BaseModel):
    inserted_id: int


class ScoredItemOut(BaseModel):
    item_id: int
    score: float
    reason: str


class RecommendationsResponse(BaseModel):
    user_id: int
    strategy: str
    limit: int
    recommendations: list[ScoredItemOut]


class NeighborOut(BaseModel):
    user_id: int
    similarity: float


class SimilarUsersResponse(BaseModel):
    user_id: int
    neighbors: list[NeighborOut]


class SimilarItemsResponse(BaseModel):
    item_id: int
    similar_items: list[ScoredItemOut]


class PopularItemsResponse(BaseModel):
    items: list[ScoredItemOut]


class SimilarityResponse(BaseModel):
    id_a: int
    id_b: int
    kind: str
    similarity: float


class ImpressionOutcomeIn(BaseModel):
    user_id: int = Field(..., ge=1)
    item_id: int = Field(..., ge=1)
    recommendation_kind: str
    outcome: str


class ImpressionOutcomeResponse(BaseModel):
    updated: bool


class KindStatsOut(BaseModel):
    shown: int
    clicked: int
    purchased: int
    click_rate: float
    purchase_rate: float


class StatsResponse(BaseModel):
    user_id: int
    total: int
    overall: KindStatsOut
    by_kind: dict[str, KindStatsOut]


class EvaluationResponse(BaseModel):
    user_id: int
    shown: int
    accuracy: float
    click_rate: float
    purchase_rate: float
    novelty: float
    serendipity: float
