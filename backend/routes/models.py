"""Pydantic request models for API endpoints."""

from typing import Any, Literal

from fastapi import HTTPException
from pydantic import ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from gm_director.models import CamelModel
from gm_director.storage import validate_id


class UpdateTactics(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    tactics_level: str | None = None
    primary_focus: str | None = None
    teamwork: bool | None = None


class UpdateCharacterAI(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    action_priority: str | None = None
    personality: str | None = None
    communication_style: str | None = None


class UpsertEntity(CamelModel):
    category: Literal["core", "bonus"] = "core"
    collection: str | None = None
    entity: dict[str, Any]


class UpdateEntityStatus(CamelModel):
    status: Literal["undiscovered", "discovered", "consumed"]


def partial_fields(body: CamelModel) -> dict[str, Any]:
    """Set fields of a partial-update body, keyed by their JSON names."""
    return body.model_dump(by_alias=True, exclude_none=True)


def validation_detail(error: ValidationError) -> list[dict[str, str]]:
    return [
        {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
        for err in error.errors()
    ]


def check_session_id(session_id: str) -> None:
    """Reject a session id that cannot name a storage path."""
    try:
        validate_id("session", session_id)
    except ValueError as e:
        raise HTTPException(400, str(e))
