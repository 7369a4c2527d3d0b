from __future__ import annotations

from fastapi import APIRouter, Depends

from shop_cf.api.deps import get_engine
from shop_cf.api.schemas import IngestResponse, InteractionEventIn
from shop_cf.services.recommend import RecommendationEngine


router = APIRouter()


@router.post("/events", response_model=IngestResponse)
def post_event(evt: InteractionEventIn, engine: RecommendationEngine = Depends(get_engine)) -> IngestResponse:
    inserted_id = engine.record_interaction(
        evt.user_id,
        evt.item_id,
        evt.action_kind,
        occurred_at=evt.occurred_at,
    )
    return IngestResponse(inserted_id=inserted_id)
