"""Service wiring shared by the HTTP routes and the MCP server.

init_services(data_dir) builds one of each component over the data
directory; the accessor functions return them. Settings changes go through
update_settings(), which rebuilds the scoring policy and the provider chain
and clears the result cache.

Tests pass `providers` to replace the configured connections with stubs.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from gm_director.audit import AgentLog
from gm_director.cache import DEFAULT_MAX_ENTRIES, ResultCache
from gm_director.context import build_game_context
from gm_director.llm import LLM, build_providers
from gm_director.models import EMPTY_CONTEXT, GameContext
from gm_director.pipeline import TriggerChainOrchestrator
from gm_director.pools import EntityPoolStore
from gm_director.recommend import RecommendationEngine, ScoringPolicy
from gm_director.resilience import CircuitBreaker, ProviderChain, RetryPolicy
from gm_director.storage import Storage
from gm_director.tactics import CharacterAIStore, TacticsStore

logger = logging.getLogger(__name__)


class Services:
    def __init__(
        self,
        data_dir: Path,
        providers: Mapping[str, LLM] | None = None,
        clock=time.monotonic,
        sleep=asyncio.sleep,
    ) -> None:
        self.storage = Storage(data_dir)
        self.pools = EntityPoolStore(self.storage, on_change=self._pool_changed)
        self.log = AgentLog(self.storage)
        self.tactics = TacticsStore(self.log)
        self.character_ai = CharacterAIStore(self.log)
        self._provider_override = dict(providers) if providers is not None else None
        self._breakers: dict[str, CircuitBreaker] = {}
        self._clock = clock
        self._sleep = sleep
        self.reload_config()

    def _pool_changed(self, pool_id: str) -> None:
        dropped = self.cache.invalidate_tag(f"pool:{pool_id}")
        logger.debug("pool changed pool=%s dropped=%d", pool_id, dropped)

    def reload_config(self) -> None:
        config = self.storage.get_config()
        policy = RetryPolicy.from_config(config)
        providers = (
            self._provider_override if self._provider_override is not None
            else build_providers(config)
        )
        # Breakers are rebuilt so new thresholds apply.
        self._breakers = {}
        self.chain = ProviderChain(
            providers, policy, breakers=self._breakers, clock=self._clock, sleep=self._sleep
        )
        self.cache = ResultCache(
            default_ttl=config["cache"]["ttl"],
            clock=self._clock,
            max_entries=config["cache"].get("max_entries", DEFAULT_MAX_ENTRIES),
        )
        self.engine = RecommendationEngine(
            self.pools, self.cache, policy=ScoringPolicy.from_config(config)
        )
        self.orchestrator = TriggerChainOrchestrator(
            storage=self.storage,
            engine=self.engine,
            tactics=self.tactics,
            narrator=self.chain,
            log=self.log,
            character_ai=self.character_ai,
            prompt_template=config["narration_prompt"] or None,
        )
        logger.info("services configured providers=%s", ", ".join(self.chain.provider_names) or "-")

    def context_for(self, session_id: str, campaign_id: str | None = None) -> GameContext:
        """GameContext from the stored session and campaign documents."""
        session = self.storage.get_session(session_id)
        if session is None:
            return EMPTY_CONTEXT
        campaign_id = campaign_id or session.get("campaignId") or session_id
        campaign = self.storage.get_campaign(campaign_id) or {"campaignId": campaign_id}
        return build_game_context(session, campaign)

    def update_settings(self, fields: dict[str, Any]) -> dict[str, Any]:
        config = self.storage.update_config(fields)
        self.reload_config()
        return config


_services: Services | None = None


def init_services(
    data_dir: Path,
    providers: Mapping[str, LLM] | None = None,
    sleep=asyncio.sleep,
) -> Services:
    global _services
    _services = Services(data_dir, providers=providers, sleep=sleep)
    return _services


def get_services() -> Services:
    assert _services is not None, "Call init_services() before using services"
    return _services
