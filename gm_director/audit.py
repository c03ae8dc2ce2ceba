"""Append-only agent log.

Each session keeps one log (sessions/{id}/agent-log.json) shared by every
agent type: GM tactics changes ("gm"), character AI settings ("character")
and trigger-chain results ("chain_log"). Rows are never edited or removed.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from gm_director.models import LogPage, LogRecord
from gm_director.storage import Storage

logger = logging.getLogger(__name__)

CHAIN_LOG = "chain_log"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _timestamp(value: str) -> datetime:
    return _aware(datetime.fromisoformat(value.replace("Z", "+00:00")))


class AgentLog:
    def __init__(self, storage: Storage, clock: Callable[[], datetime] = utc_now) -> None:
        self._storage = storage
        self._clock = clock

    def append(
        self,
        session_id: str,
        agent_type: str,
        payload: dict[str, Any],
        subject_id: str | None = None,
    ) -> LogRecord:
        record = LogRecord(
            id=uuid.uuid4().hex,
            session_id=session_id,
            agent_type=agent_type,
            subject_id=subject_id,
            payload=payload,
            updated_at=self._clock().isoformat(timespec="microseconds"),
        )
        self._storage.append_agent_log(session_id, [record.model_dump(by_alias=True, mode="json")])
        logger.debug("agent log append session=%s type=%s", session_id, agent_type)
        return record

    def records(
        self,
        session_id: str,
        agent_type: str | None = None,
        subject_id: str | None = None,
    ) -> list[LogRecord]:
        """Rows of one session in (updated_at, append order)."""
        rows = [LogRecord.model_validate(r) for r in self._storage.get_agent_log(session_id)]
        rows = [
            r for r in rows
            if (agent_type is None or r.agent_type == agent_type)
            and (subject_id is None or r.subject_id == subject_id)
        ]
        return sorted(rows, key=lambda r: _timestamp(r.updated_at))

    def query(
        self,
        agent_type: str | None = None,
        session_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        text: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> LogPage:
        """Newest-first page of log rows matching every given filter."""
        sessions = [session_id] if session_id else self._storage.list_logged_sessions()
        needle = text.lower() if text else None
        since = _aware(since) if since else None
        until = _aware(until) if until else None

        matches: list[LogRecord] = []
        for sid in sessions:
            for record in self.records(sid, agent_type):
                at = _timestamp(record.updated_at)
                if since is not None and at < since:
                    continue
                if until is not None and at > until:
                    continue
                if needle and needle not in json.dumps(record.payload).lower():
                    continue
                matches.append(record)

        matches.sort(key=lambda r: _timestamp(r.updated_at), reverse=True)
        page = matches[offset:offset + limit]
        return LogPage(
            logs=tuple(page),
            total_count=len(matches),
            has_more=offset + len(page) < len(matches),
        )
