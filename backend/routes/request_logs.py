"""Request log query endpoint."""

from datetime import datetime

from fastapi import APIRouter, HTTPException, Query

from backend.services import get_services

router = APIRouter()


@router.get("/request-logs")
async def list_request_logs(
    agent_type: str | None = Query(None, alias="agentType"),
    session_id: str | None = Query(None, alias="sessionId"),
    since: datetime | None = None,
    until: datetime | None = None,
    q: str | None = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """Newest-first agent log rows, filtered and paginated."""
    try:
        page = get_services().log.query(
            agent_type=agent_type, session_id=session_id,
            since=since, until=until, text=q,
            limit=limit, offset=offset,
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    return page.model_dump(by_alias=True, mode="json")
