"""Recommendation endpoints."""

from fastapi import APIRouter, HTTPException, Query

from backend.services import get_services
from gm_director.recommend import InvalidEntityType

router = APIRouter()


@router.get("/recommendations")
async def get_recommendations(
    session_id: str = Query(alias="sessionId"),
    entity_type: str = Query(alias="entityType"),
    campaign_id: str | None = Query(None, alias="campaignId"),
    max_recommendations: int = Query(5, alias="max", ge=1, le=50),
):
    """Ranked recommendations of one entity type for a session's current context."""
    services = get_services()
    try:
        context = services.context_for(session_id, campaign_id)
        result = await services.engine.recommend(entity_type, context, max_recommendations)
    except InvalidEntityType as e:
        raise HTTPException(400, f"Unknown entity type: {e}")
    except ValueError as e:
        raise HTTPException(400, str(e))
    return result.model_dump(by_alias=True, mode="json")


@router.get("/recommendations/stats")
async def recommendation_stats():
    """Cache and scoring statistics."""
    return get_services().engine.statistics()
