"""Character AI settings endpoints."""

from fastapi import APIRouter, HTTPException, Query
from pydantic import ValidationError

from backend.services import get_services

from .models import UpdateCharacterAI, check_session_id, partial_fields, validation_detail

router = APIRouter()


@router.get("/character-ai")
async def list_character_ai(session_id: str = Query(alias="sessionId")):
    """Settings for every party member and every character with stored settings."""
    check_session_id(session_id)
    services = get_services()
    session = services.storage.get_session(session_id) or {}
    character_ids = list(dict.fromkeys([
        *(session.get("partyMemberIds") or []),
        *services.character_ai.characters(session_id),
    ]))
    return {
        "sessionId": session_id,
        "characters": [
            {
                "characterId": character_id,
                "settings": services.character_ai.get_current(session_id, character_id)
                .model_dump(by_alias=True),
            }
            for character_id in character_ids
        ],
    }


@router.put("/character-ai/{character_id}")
async def update_character_ai(
    character_id: str,
    body: UpdateCharacterAI,
    session_id: str = Query(alias="sessionId"),
):
    """Merge a partial change into one character's AI settings."""
    check_session_id(session_id)
    try:
        settings = get_services().character_ai.update(session_id, character_id, partial_fields(body))
    except ValidationError as e:
        raise HTTPException(400, validation_detail(e))
    return {"characterId": character_id, "settings": settings.model_dump(by_alias=True)}
