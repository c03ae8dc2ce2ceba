"""JSON file storage.

All state is stored in flat JSON files under a configurable base directory.
There is no database or ORM; reads and writes go through plain helper
methods that load and dump JSON.

Directory layout:

    {base}/
      config.json               ← connections, fallback order, tuning
      pools/
        {pool_id}.json          ← entity pool (legacy flat or two-tier)
      campaigns/
        {campaign_id}.json      ← campaign state (milestones, default mood)
      sessions/
        {session_id}.json       ← session state (location, party, actions)
        {session_id}/
          agent-log.json        ← append-only settings and chain-log rows
"""

from __future__ import annotations

import copy
import json
import logging
import re
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_ID_RE = re.compile(r"^[A-Za-z0-9_.-]+$")

_CONFIG_DEFAULTS: dict[str, Any] = {
    "llm_connections": [],
    "narrator_fallback_order": [],
    "narration_prompt": "",
    "resilience": {
        "max_retries": 2,
        "base_delay": 0.5,
        "multiplier": 2.0,
        "max_delay": 8.0,
        "call_timeout": 30.0,
        "failure_threshold": 3,
        "failure_window": 60.0,
        "cooldown": 30.0,
    },
    "scoring": {
        "fit_weight": 0.5,
        "timing_weight": 0.3,
        "recency_weight": 0.2,
        "immediate_threshold": 0.7,
        "exclusion_floor": 0.3,
        "recency_window": 5,
    },
    "cache": {"ttl": 300.0, "max_entries": 1000},
}

# Sections merged key-by-key; everything else is replaced wholesale.
_MERGED_SECTIONS = ("resilience", "scoring", "cache")


class PersistenceError(OSError):
    """Raised when a JSON document cannot be written."""


def validate_id(kind: str, value: str) -> str:
    if not value or value in (".", "..") or not _ID_RE.match(value):
        raise ValueError(f"Invalid {kind} id: {value!r}")
    return value


class Storage:
    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._pools_root = self._base / "pools"
        self._sessions_root = self._base / "sessions"
        self._campaigns_root = self._base / "campaigns"
        for root in (self._pools_root, self._sessions_root, self._campaigns_root):
            root.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_json(self, path: Path) -> Any:
        return json.loads(path.read_text())

    def _write_json(self, path: Path, data: Any) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(data, indent=2))
        except OSError as e:
            raise PersistenceError(f"Cannot write {path}: {e}") from e

    def _read_optional(self, path: Path) -> Any | None:
        if not path.is_file():
            return None
        return self._read_json(path)

    # ------------------------------------------------------------------
    # Entity pools
    # ------------------------------------------------------------------

    def _pool_file(self, pool_id: str) -> Path:
        return self._pools_root / f"{validate_id('pool', pool_id)}.json"

    def read_pool_document(self, pool_id: str) -> dict[str, Any] | None:
        return self._read_optional(self._pool_file(pool_id))

    def write_pool_document(self, pool_id: str, document: dict[str, Any]) -> None:
        self._write_json(self._pool_file(pool_id), document)
        logger.debug("pool written pool=%s", pool_id)

    def list_pools(self) -> list[str]:
        return sorted(p.stem for p in self._pools_root.glob("*.json"))

    # ------------------------------------------------------------------
    # Sessions and campaigns
    # ------------------------------------------------------------------

    def _session_file(self, session_id: str) -> Path:
        return self._sessions_root / f"{validate_id('session', session_id)}.json"

    def _campaign_file(self, campaign_id: str) -> Path:
        return self._campaigns_root / f"{validate_id('campaign', campaign_id)}.json"

    def get_session(self, session_id: str) -> dict[str, Any] | None:
        return self._read_optional(self._session_file(session_id))

    def update_session(self, session_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Shallow-merge fields into the session document. Returns it."""
        state = self.get_session(session_id) or {"sessionId": session_id}
        state.update(fields)
        state["sessionId"] = session_id
        self._write_json(self._session_file(session_id), state)
        return state

    def get_campaign(self, campaign_id: str) -> dict[str, Any] | None:
        return self._read_optional(self._campaign_file(campaign_id))

    def update_campaign(self, campaign_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Shallow-merge fields into the campaign document. Returns it."""
        state = self.get_campaign(campaign_id) or {"campaignId": campaign_id}
        state.update(fields)
        state["campaignId"] = campaign_id
        self._write_json(self._campaign_file(campaign_id), state)
        return state

    # ------------------------------------------------------------------
    # Agent log (append-only)
    # ------------------------------------------------------------------

    def _agent_log_file(self, session_id: str) -> Path:
        return self._sessions_root / validate_id("session", session_id) / "agent-log.json"

    def get_agent_log(self, session_id: str) -> list[dict[str, Any]]:
        return self._read_optional(self._agent_log_file(session_id)) or []

    def append_agent_log(self, session_id: str, rows: list[dict[str, Any]]) -> None:
        existing = self.get_agent_log(session_id)
        existing.extend(rows)
        self._write_json(self._agent_log_file(session_id), existing)

    def list_logged_sessions(self) -> list[str]:
        return sorted(
            d.name for d in self._sessions_root.iterdir()
            if d.is_dir() and (d / "agent-log.json").is_file()
        )

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    def _config_file(self) -> Path:
        return self._base / "config.json"

    def get_config(self) -> dict[str, Any]:
        """Read config, returning defaults merged with stored values."""
        config = copy.deepcopy(_CONFIG_DEFAULTS)
        stored = self._read_optional(self._config_file()) or {}
        self._merge(config, stored)
        return config

    def update_config(self, fields: dict[str, Any]) -> dict[str, Any]:
        """Merge fields into config and persist. Returns full config."""
        config = self.get_config()
        self._merge(config, fields)
        self._write_json(self._config_file(), config)
        return config

    @staticmethod
    def _merge(config: dict[str, Any], fields: dict[str, Any]) -> None:
        for key, value in fields.items():
            if key not in _CONFIG_DEFAULTS:
                logger.warning("ignoring unknown config key %s", key)
                continue
            if key in _MERGED_SECTIONS and isinstance(value, dict):
                config[key].update(value)
            else:
                config[key] = value
