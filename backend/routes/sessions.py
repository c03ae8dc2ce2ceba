"""Session and campaign state endpoints."""

from fastapi import APIRouter, HTTPException

from backend.services import get_services

router = APIRouter()


@router.get("/sessions/{session_id}")
async def get_session(session_id: str):
    """Stored session state (location, party, recent actions)."""
    try:
        session = get_services().storage.get_session(session_id)
    except ValueError as e:
        raise HTTPException(400, str(e))
    if session is None:
        raise HTTPException(404, "Session not found")
    return session


@router.patch("/sessions/{session_id}")
async def update_session(session_id: str, body: dict):
    """Merge fields into the session state, creating it if needed."""
    try:
        return get_services().storage.update_session(session_id, body)
    except ValueError as e:
        raise HTTPException(400, str(e))


@router.get("/campaigns/{campaign_id}")
async def get_campaign(campaign_id: str):
    """Stored campaign state (milestones, default mood)."""
    try:
        campaign = get_services().storage.get_campaign(campaign_id)
    except ValueError as e:
        raise HTTPException(400, str(e))
    if campaign is None:
        raise HTTPException(404, "Campaign not found")
    return campaign


@router.patch("/campaigns/{campaign_id}")
async def update_campaign(campaign_id: str, body: dict):
    """Merge fields into the campaign state and drop its cached recommendations."""
    services = get_services()
    try:
        campaign = services.storage.update_campaign(campaign_id, body)
    except ValueError as e:
        raise HTTPException(400, str(e))
    services.engine.invalidate_campaign(campaign_id)
    return campaign
