from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from shop_cf.api.deps import get_engine
from shop_cf.api.schemas import (
    NeighborOut,
    PopularItemsResponse,
    RecommendationsResponse,
    ScoredItemOut,
    SimilarItemsResponse,
    SimilarityResponse,
    SimilarUsersResponse,
)
from shop_cf.core.constants import HYBRID
from shop_cf.records import ScoredItem
from shop_cf.services.recommend import RecommendationEngine


router = APIRouter()


def _out(items: list[ScoredItem]) -> list[ScoredItemOut]:
    return [ScoredItemOut(item_id=i.item_id, score=i.score, reason=i.reason) for i in items]


@router.get("/recommendations/{user_id}", response_model=RecommendationsResponse)
def recommendations(
    user_id: int,
    strategy: str = HYBRID,
    limit: Optional[int] = None,
    engine: RecommendationEngine = Depends(get_engine),
) -> RecommendationsResponse:
    items = engine.get_recommendations(user_id, strategy, limit)
    return RecommendationsResponse(
        user_id=user_id,
        strategy=strategy.strip().lower(),
        limit=limit if limit is not None else engine.default_limit,
        recommendations=_out(items),
    )


@router.get("/similar-users/{user_id}", response_model=SimilarUsersResponse)
def similar_users(
    user_id: int,
    limit: Optional[int] = None,
    engine: RecommendationEngine = Depends(get_engine),
) -> SimilarUsersResponse:
    neighbors = engine.get_similar_users(user_id, limit)
    return SimilarUsersResponse(
        user_id=user_id,
        neighbors=[NeighborOut(user_id=n.user_id, similarity=n.similarity) for n in neighbors],
    )


@router.get("/similar-items/{item_id}", response_model=SimilarItemsResponse)
def similar_items(
    item_id: int,
    limit: Optional[int] = None,
    engine: RecommendationEngine = Depends(get_engine),
) -> SimilarItemsResponse:
    return SimilarItemsResponse(item_id=item_id, similar_items=_out(engine.get_similar_items(item_id, limit)))


@router.get("/popular-items", response_model=PopularItemsResponse)
def popular_items(
    limit: Optional[int] = None,
    engine: RecommendationEngine = Depends(get_engine),
) -> PopularItemsResponse:
    return PopularItemsResponse(items=_out(engine.get_popular_items(limit)))


@router.get("/similarity", response_model=SimilarityResponse)
def similarity(
    id_a: int,
    id_b: int,
    kind: str,
    engine: RecommendationEngine = Depends(get_engine),
) -> SimilarityResponse:
    score = engine.pairwise_similarity(id_a, id_b, kind)
    return SimilarityResponse(id_a=id_a, id_b=id_b, kind=kind.strip().lower(), similarity=score)
