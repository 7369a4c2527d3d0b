from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends

from shop_cf.api.deps import get_engine
from shop_cf.api.schemas import (
    EvaluationResponse,
    ImpressionOutcomeIn,
    ImpressionOutcomeResponse,
    KindStatsOut,
    StatsResponse,
)
from shop_cf.records import KindStats
from shop_cf.services.recommend import RecommendationEngine


router = APIRouter(prefix="/impressions")


def _kind_out(s: KindStats) -> KindStatsOut:
    return KindStatsOut(
        shown=s.shown,
        clicked=s.clicked,
        purchased=s.purchased,
        click_rate=round(s.click_rate, 2),
        purchase_rate=round(s.purchase_rate, 2),
    )


@router.post("/outcome", response_model=ImpressionOutcomeResponse)
def post_outcome(
    body: ImpressionOutcomeIn,
    engine: RecommendationEngine = Depends(get_engine),
) -> ImpressionOutcomeResponse:
    updated = engine.record_impression_outcome(body.user_id, body.item_id, body.recommendation_kind, body.outcome)
    return ImpressionOutcomeResponse(updated=updated)


@router.get("/stats/{user_id}", response_model=StatsResponse)
def stats(
    user_id: int,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    engine: RecommendationEngine = Depends(get_engine),
) -> StatsResponse:
    s = engine.get_impression_stats(user_id, since=since, until=until)
    return StatsResponse(
        user_id=s.user_id,
        total=s.total,
        overall=_kind_out(s.overall),
        by_kind={kind: _kind_out(v) for kind, v in sorted(s.by_kind.items())},
    )


@router.get("/evaluation/{user_id}", response_model=EvaluationResponse)
def evaluation(
    user_id: int,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    engine: RecommendationEngine = Depends(get_engine),
) -> EvaluationResponse:
    e = engine.evaluate(user_id, since=since, until=until)
    return EvaluationResponse(
        user_id=e.user_id,
        shown=e.shown,
        accuracy=round(e.accuracy, 2),
        click_rate=round(e.click_rate, 2),
        purchase_rate=round(e.purchase_rate, 2),
        novelty=round(e.novelty, 2),
        serendipity=round(e.serendipity, 2),
    )
