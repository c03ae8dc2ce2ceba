"""Game context builder.

Turns raw session and campaign state documents into an immutable
GameContext. Pure: no I/O, no clock, no randomness. Accepts camelCase or
snake_case keys since state documents arrive from both the HTTP layer and
older stored files.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from gm_director.models import EMPTY_CONTEXT, GameContext

RECENT_ACTION_LIMIT = 5


def _pick(state: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = state.get(key)
        if value is not None:
            return value
    return None


def _sequence(value: Any) -> tuple[Any, ...]:
    """Coerce a list-ish value; a lone string is a one-element list."""
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(value)
    return ()


def _ids(value: Any) -> tuple[str, ...]:
    return tuple(t for t in map(_text, _sequence(value)) if t)


def _text(value: Any) -> str | None:
    if isinstance(value, str):
        return value or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _action_summary(action: Any) -> str:
    if isinstance(action, Mapping):
        return str(action.get("summary") or action.get("text") or "")
    return str(action)


def _milestones(campaign_state: Mapping[str, Any]) -> tuple[frozenset[str], frozenset[str]]:
    active = set(_ids(_pick(campaign_state, "activeMilestoneIds", "active_milestone_ids")))
    completed = set(_ids(_pick(campaign_state, "completedMilestoneIds", "completed_milestone_ids")))
    for milestone in _sequence(campaign_state.get("milestones")):
        # Entries without an id cannot be referenced by entities.
        if not isinstance(milestone, Mapping) or not _text(milestone.get("id")):
            continue
        status = milestone.get("status")
        if status == "active":
            active.add(_text(milestone["id"]))
        elif status == "completed":
            completed.add(_text(milestone["id"]))
    return frozenset(active), frozenset(completed)


def build_game_context(
    session_state: Mapping[str, Any] | None,
    campaign_state: Mapping[str, Any] | None,
    *,
    recent_action_limit: int = RECENT_ACTION_LIMIT,
) -> GameContext:
    """Build the context a recommendation is made for.

    Returns EMPTY_CONTEXT when either state, or its id, is missing.
    Only the last `recent_action_limit` actions are kept. Malformed fields
    are dropped rather than rejected.
    """
    if not isinstance(session_state, Mapping) or not isinstance(campaign_state, Mapping):
        return EMPTY_CONTEXT
    if not session_state or not campaign_state:
        return EMPTY_CONTEXT

    session_id = _text(_pick(session_state, "sessionId", "session_id", "id"))
    campaign_id = (
        _text(_pick(campaign_state, "campaignId", "campaign_id", "id"))
        or _text(_pick(session_state, "campaignId", "campaign_id"))
    )
    if not session_id or not campaign_id:
        return EMPTY_CONTEXT

    actions = [
        _action_summary(a)
        for a in _sequence(
            _pick(session_state, "recentActions", "recent_actions", "recentActionSummaries")
        )
    ]
    actions = actions[-recent_action_limit:] if recent_action_limit > 0 else []

    active, completed = _milestones(campaign_state)

    return GameContext(
        session_id=session_id,
        campaign_id=campaign_id,
        location_id=_text(_pick(session_state, "currentLocation", "locationId", "location_id")),
        time_of_day=(
            _text(_pick(session_state, "timeOfDay", "time_of_day"))
            or _text(_pick(campaign_state, "timeOfDay", "time_of_day"))
        ),
        party_member_ids=frozenset(
            _ids(_pick(session_state, "partyMemberIds", "party_member_ids", "participants"))
        ),
        recent_action_summaries=tuple(actions),
        mood=(
            _text(_pick(session_state, "mood"))
            or _text(_pick(campaign_state, "defaultMood", "default_mood", "mood"))
        ),
        active_milestone_ids=active,
        completed_milestone_ids=completed - active,
        recent_entity_ids=_ids(_pick(session_state, "recentEntityIds", "recent_entity_ids")),
    )
