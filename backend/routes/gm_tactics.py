"""GM tactics endpoints (current settings, partial update, reset)."""

from fastapi import APIRouter, HTTPException, Query
from pydantic import ValidationError

from backend.services import get_services
from gm_director.audit import CHAIN_LOG

from .models import UpdateTactics, check_session_id, partial_fields, validation_detail

router = APIRouter()

RECENT_DECISIONS = 5


def _tactics_view(session_id: str) -> dict:
    services = get_services()
    current = services.tactics.get_current(session_id)
    recent = services.log.query(agent_type=CHAIN_LOG, session_id=session_id, limit=RECENT_DECISIONS)
    return {
        "sessionId": session_id,
        "currentSettings": current.model_dump(by_alias=True),
        "recentDecisions": [
            {
                "chainId": row.payload.get("chainId"),
                "message": row.payload.get("gmResponse", {}).get("message", ""),
                "appliedTactics": row.payload.get("gmResponse", {}).get("appliedTactics"),
                "triggeredAt": row.updated_at,
            }
            for row in recent.logs
        ],
    }


@router.get("/gm-tactics")
async def get_gm_tactics(session_id: str = Query(alias="sessionId")):
    """Current GM tactics for a session plus its most recent decisions."""
    check_session_id(session_id)
    return _tactics_view(session_id)


@router.put("/gm-tactics")
async def update_gm_tactics(body: UpdateTactics, session_id: str = Query(alias="sessionId")):
    """Merge a partial change into the session's GM tactics."""
    check_session_id(session_id)
    try:
        get_services().tactics.update(session_id, partial_fields(body))
    except ValidationError as e:
        raise HTTPException(400, validation_detail(e))
    return _tactics_view(session_id)


@router.post("/gm-tactics/reset")
async def reset_gm_tactics(session_id: str = Query(alias="sessionId")):
    """Record the default tactics as the session's current settings."""
    check_session_id(session_id)
    get_services().tactics.reset(session_id)
    return _tactics_view(session_id)
