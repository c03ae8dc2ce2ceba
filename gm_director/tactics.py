"""GM tactics and character AI settings, stored as an event log.

Settings are never overwritten. Every update merges the partial change onto
the current value, validates it, and appends the full result as a new row.
The current value is a fold over the rows in timestamp order, starting
from the defaults.
"""

from __future__ import annotations

import logging
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from gm_director.audit import AgentLog
from gm_director.models import CharacterAISettings, LogRecord, TacticsSettings, camelize_keys

logger = logging.getLogger(__name__)

GM_AGENT = "gm"
CHARACTER_AGENT = "character"

DEFAULT_TACTICS = TacticsSettings()
DEFAULT_CHARACTER_AI = CharacterAISettings()

S = TypeVar("S", bound=BaseModel)


class SettingsStore(Generic[S]):
    agent_type: str
    model: type[S]

    def __init__(self, log: AgentLog) -> None:
        self._log = log

    def history(self, session_id: str, subject_id: str | None = None) -> list[LogRecord]:
        return self._log.records(session_id, self.agent_type, subject_id)

    def _current(self, session_id: str, subject_id: str | None) -> S:
        merged: dict[str, Any] = self.model().model_dump(by_alias=True)
        for record in self.history(session_id, subject_id):
            merged.update(camelize_keys(record.payload))
        return self.model.model_validate(merged)

    def _update(self, session_id: str, subject_id: str | None, partial: dict[str, Any]) -> S:
        current = self._current(session_id, subject_id)
        # Raises pydantic.ValidationError on unknown keys or values.
        updated = self.model.model_validate(
            {**current.model_dump(by_alias=True), **camelize_keys(partial)}
        )
        self._log.append(
            session_id, self.agent_type, updated.model_dump(by_alias=True), subject_id=subject_id
        )
        logger.info(
            "settings updated session=%s agent=%s subject=%s", session_id, self.agent_type, subject_id
        )
        return updated

    def _reset(self, session_id: str, subject_id: str | None) -> S:
        defaults = self.model()
        self._log.append(
            session_id, self.agent_type, defaults.model_dump(by_alias=True), subject_id=subject_id
        )
        logger.info("settings reset session=%s agent=%s subject=%s", session_id, self.agent_type, subject_id)
        return defaults


class TacticsStore(SettingsStore[TacticsSettings]):
    """The GM's tactics for one session."""

    agent_type = GM_AGENT
    model = TacticsSettings

    def get_current(self, session_id: str) -> TacticsSettings:
        return self._current(session_id, None)

    def update(self, session_id: str, partial: dict[str, Any]) -> TacticsSettings:
        return self._update(session_id, None, partial)

    def reset(self, session_id: str) -> TacticsSettings:
        return self._reset(session_id, None)


class CharacterAIStore(SettingsStore[CharacterAISettings]):
    """Per-character AI behaviour within one session."""

    agent_type = CHARACTER_AGENT
    model = CharacterAISettings

    def get_current(self, session_id: str, character_id: str) -> CharacterAISettings:
        return self._current(session_id, character_id)

    def update(self, session_id: str, character_id: str, partial: dict[str, Any]) -> CharacterAISettings:
        return self._update(session_id, character_id, partial)

    def reset(self, session_id: str, character_id: str) -> CharacterAISettings:
        return self._reset(session_id, character_id)

    def characters(self, session_id: str) -> list[str]:
        """Ids of characters with stored settings, in first-seen order."""
        return list(dict.fromkeys(r.subject_id for r in self.history(session_id) if r.subject_id))
