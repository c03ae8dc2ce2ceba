"""Trigger-chain orchestrator: turns one player or GM action into a GM response.

Chain flow:
  1. start           validate the request
  2. load_tactics    current GM tactics for the session (defaults on failure)
  3. query_entities  build the game context, look up entities at the location
                     (empty list on failure, annotated in contextAnalysis)
  4. call_narration  render the prompt and call the provider chain
                     (the only step whose failure ends the chain)
  5. assemble        compose the ChainResult
  6. log             append the result to the session's agent log
                     (best effort, failure is only logged)
  7. done

A failed chain raises a ChainError subclass and reaches the "error" state;
nothing partial is returned.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from enum import Enum
from typing import Any

from gm_director.audit import CHAIN_LOG, AgentLog, utc_now
from gm_director.context import build_game_context
from gm_director.models import (
    CharacterAISettings,
    ChainResult,
    ContextAnalysis,
    Entity,
    EntityQuery,
    EntitySummary,
    ExecutionInfo,
    GameContext,
    GMResponse,
    NarrationInfo,
    TacticsSettings,
    TriggerRequest,
)
from gm_director.prompts import (
    DEFAULT_NARRATION_PROMPT,
    PromptError,
    build_narration_context,
    parse_gm_reply,
    render_prompt,
)
from gm_director.recommend import RecommendationEngine
from gm_director.resilience import ChainOutcome, CircuitOpenError, ProviderChain, ProvidersExhausted
from gm_director.storage import Storage
from gm_director.tactics import DEFAULT_TACTICS, CharacterAIStore, TacticsStore

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.8
QUERY_TYPES = ("item", "quest", "event", "npc", "enemy")
MAX_QUERY_RESULTS = 20
MAX_PROMPT_ENTITIES = 5


class ChainStep(str, Enum):
    START = "start"
    LOAD_TACTICS = "load_tactics"
    QUERY_ENTITIES = "query_entities"
    CALL_NARRATION = "call_narration"
    ASSEMBLE = "assemble"
    LOG = "log"
    DONE = "done"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ChainError(Exception):
    """A trigger chain could not produce a response."""

    def __init__(self, message: str, steps: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.steps = steps


class ChainValidationError(ChainError):
    """The request is missing required fields."""


class NarrationUnavailable(ChainError):
    """Every narration provider failed in every retry round."""

    def __init__(
        self,
        message: str,
        attempted: tuple[str, ...],
        failures: dict[str, str],
        skipped: tuple[str, ...] = (),
        steps: tuple[str, ...] = (),
    ) -> None:
        super().__init__(message, steps)
        self.attempted = attempted
        self.failures = failures
        self.skipped = skipped


class NarrationCircuitOpen(ChainError):
    """Every narration provider was skipped by an open circuit breaker."""

    def __init__(self, message: str, skipped: tuple[str, ...], steps: tuple[str, ...] = ()) -> None:
        super().__init__(message, steps)
        self.skipped = skipped


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class TriggerChainOrchestrator:
    def __init__(
        self,
        *,
        storage: Storage,
        engine: RecommendationEngine,
        tactics: TacticsStore,
        narrator: ProviderChain,
        log: AgentLog,
        character_ai: CharacterAIStore | None = None,
        prompt_template: str | None = None,
    ) -> None:
        self._storage = storage
        self._engine = engine
        self._tactics = tactics
        self._narrator = narrator
        self._log = log
        self._character_ai = character_ai
        self._prompt_template = prompt_template or DEFAULT_NARRATION_PROMPT

    async def trigger(self, request: TriggerRequest) -> ChainResult:
        steps: list[str] = [ChainStep.START.value]
        try:
            return await self._run(request, steps)
        except ChainError as e:
            steps.append(ChainStep.ERROR.value)
            e.steps = tuple(steps)
            logger.warning("chain failed session=%s error=%s", request.session_id, e)
            raise
        except asyncio.CancelledError:
            logger.info("chain cancelled session=%s", request.session_id)
            raise
        except Exception as e:
            steps.append(ChainStep.ERROR.value)
            logger.exception("chain crashed session=%s", request.session_id)
            raise ChainError(f"Trigger chain failed: {e}", tuple(steps)) from e

    async def _run(self, request: TriggerRequest, steps: list[str]) -> ChainResult:
        started = time.perf_counter()
        triggered_at = utc_now().isoformat(timespec="milliseconds")
        self._validate(request)
        chain_id = f"chain_{uuid.uuid4().hex[:12]}"
        degradations: list[str] = []
        logger.info("chain start chain=%s session=%s", chain_id, request.session_id)

        # Load tactics
        steps.append(ChainStep.LOAD_TACTICS.value)
        try:
            tactics = self._tactics.get_current(request.session_id)
        except Exception as e:
            logger.warning("tactics unavailable session=%s: %s", request.session_id, e)
            tactics = DEFAULT_TACTICS
            degradations.append(f"tactics: default settings used ({e})")

        # Query entities
        steps.append(ChainStep.QUERY_ENTITIES.value)
        context: GameContext | None = None
        entities: tuple[Entity, ...] = ()
        lookup_error: str | None = None
        try:
            context = self._build_context(request)
            if context.location_id:
                entities = await self._engine.query_entities(
                    EntityQuery(location_id=context.location_id, types=QUERY_TYPES),
                    context,
                    max_results=MAX_QUERY_RESULTS,
                )
        except Exception as e:
            logger.warning("entity lookup failed session=%s: %s", request.session_id, e)
            lookup_error = str(e)
            degradations.append(f"entities: lookup failed ({e})")

        party = self._party_settings(request, degradations)

        # Call narration
        steps.append(ChainStep.CALL_NARRATION.value)
        location = context.location_id if context else request.location_id
        try:
            prompt = render_prompt(
                self._prompt_template,
                build_narration_context(
                    request.player_message,
                    tactics,
                    entities[:MAX_PROMPT_ENTITIES],
                    party=party,
                    location=location,
                    time_of_day=context.time_of_day if context else request.time_of_day,
                    mood=context.mood if context else request.mood,
                    recent_actions=context.recent_action_summaries if context else (),
                ),
            )
        except PromptError as e:
            raise ChainError(f"Narration prompt could not be rendered: {e}") from e

        try:
            outcome = await self._narrator.call("gm", prompt)
        except CircuitOpenError as e:
            raise NarrationCircuitOpen(str(e), skipped=e.providers) from e
        except ProvidersExhausted as e:
            raise NarrationUnavailable(
                str(e), attempted=e.attempted, failures=e.failures, skipped=e.skipped
            ) from e

        # Assemble
        steps.append(ChainStep.ASSEMBLE.value)
        steps.extend((ChainStep.LOG.value, ChainStep.DONE.value))
        result = self._assemble(
            chain_id=chain_id,
            request=request,
            tactics=tactics,
            outcome=outcome,
            entities=entities,
            party=party,
            context=context,
            lookup_error=lookup_error,
            degradations=degradations,
            triggered_at=triggered_at,
            elapsed_ms=int((time.perf_counter() - started) * 1000),
            steps=tuple(steps),
        )

        # Log
        try:
            self._log.append(request.session_id, CHAIN_LOG, result.model_dump(by_alias=True, mode="json"))
        except Exception as e:
            logger.warning("chain log write failed chain=%s: %s", chain_id, e)
            result = result.model_copy(
                update={"degradations": (*result.degradations, f"log: chain result not recorded ({e})")}
            )

        logger.info(
            "chain done chain=%s provider=%s entities=%d ms=%d",
            chain_id, outcome.provider, len(entities), result.execution_info.processing_time_ms,
        )
        return result

    # ------------------------------------------------------------------

    @staticmethod
    def _validate(request: TriggerRequest) -> None:
        missing = [
            name for name, value in (
                ("sessionId", request.session_id),
                ("playerMessage", request.player_message),
            ) if not value or not value.strip()
        ]
        if missing:
            raise ChainValidationError(f"Missing required fields: {', '.join(missing)}")

    def _build_context(self, request: TriggerRequest) -> GameContext:
        """Stored session/campaign state overlaid with what the request says."""
        session = dict(self._storage.get_session(request.session_id) or {})
        session["sessionId"] = request.session_id

        campaign_id = request.campaign_id or session.get("campaignId") or request.session_id
        campaign = dict(self._storage.get_campaign(campaign_id) or {})
        campaign["campaignId"] = campaign_id

        if request.location_id:
            session["currentLocation"] = request.location_id
        if request.participants:
            session["partyMemberIds"] = request.participants
        if request.time_of_day:
            session["timeOfDay"] = request.time_of_day
        if request.mood:
            session["mood"] = request.mood
        session["recentActions"] = [*(session.get("recentActions") or []), request.player_message]
        return build_game_context(session, campaign)

    def _party_settings(
        self, request: TriggerRequest, degradations: list[str]
    ) -> dict[str, CharacterAISettings]:
        if self._character_ai is None or not request.participants:
            return {}
        try:
            return {
                member: self._character_ai.get_current(request.session_id, member)
                for member in request.participants
            }
        except Exception as e:
            logger.warning("character settings unavailable session=%s: %s", request.session_id, e)
            degradations.append(f"party: character settings unavailable ({e})")
            return {}

    def _assemble(
        self,
        *,
        chain_id: str,
        request: TriggerRequest,
        tactics: TacticsSettings,
        outcome: ChainOutcome,
        entities: tuple[Entity, ...],
        party: dict[str, CharacterAISettings],
        context: GameContext | None,
        lookup_error: str | None,
        degradations: list[str],
        triggered_at: str,
        elapsed_ms: int,
        steps: tuple[str, ...],
    ) -> ChainResult:
        message, suggestions = parse_gm_reply(outcome.text)

        factors: list[str] = []
        time_of_day = context.time_of_day if context else request.time_of_day
        mood = context.mood if context else request.mood
        if time_of_day:
            factors.append(f"time of day: {time_of_day}")
        if mood:
            factors.append(f"mood: {mood}")

        return ChainResult(
            chain_id=chain_id,
            session_id=request.session_id,
            gm_response=GMResponse(
                message=message,
                suggestions=tuple(suggestions),
                applied_tactics=tactics,
                confidence=DEFAULT_CONFIDENCE,
            ),
            context_analysis=ContextAnalysis(
                current_location=context.location_id if context else request.location_id,
                available_entities=tuple(EntitySummary.of(e) for e in entities),
                party_status=party,
                environmental_factors=tuple(factors),
                entity_lookup_error=lookup_error,
            ),
            execution_info=ExecutionInfo(
                triggered_at=triggered_at,
                processing_time_ms=elapsed_ms,
                entities_processed=len(entities),
                steps=steps,
            ),
            next_actions=tuple(_next_actions(suggestions, entities)),
            narration=NarrationInfo(
                attempted_providers=outcome.attempted,
                successful_provider=outcome.provider,
                skipped_providers=outcome.skipped,
                failure_reasons=outcome.failures,
                usage=outcome.usage,
            ),
            degradations=tuple(degradations),
        )


def _next_actions(suggestions: list[str], entities: tuple[Entity, ...]) -> list[str]:
    if suggestions:
        return suggestions[:3]
    actions = [f"Introduce {e.name}" for e in entities if e.available][:2]
    return actions or ["Wait for the party's next move"]


def chain_error_detail(error: ChainError) -> dict[str, Any]:
    """Structured error body for moderator-facing failures."""
    detail: dict[str, Any] = {
        "type": type(error).__name__,
        "message": str(error),
        "steps": list(error.steps),
    }
    if isinstance(error, NarrationUnavailable):
        detail["attemptedProviders"] = list(error.attempted)
        detail["failedProviders"] = dict(error.failures)
        detail["skippedProviders"] = list(error.skipped)
    elif isinstance(error, NarrationCircuitOpen):
        detail["attemptedProviders"] = []
        detail["failedProviders"] = {}
        detail["skippedProviders"] = list(error.skipped)
    return detail
