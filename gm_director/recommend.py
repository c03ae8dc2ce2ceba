"""Relevance scoring and the recommendation engine.

An entity's relevance is a weighted mean of three factors, each in [0, 1]:

    fit       how well the entity matches the scene
              0.6 * location + 0.25 * mood + 0.15 * time of day
              (1.0 match, 0.5 not declared by the entity, 0.0 mismatch)
    timing    where the entity's milestone stands in the campaign
              active 1.0 · none 0.6 · completed 0.3 · not yet reached 0.2
    recency   1.0 unless the entity was surfaced recently; the most recently
              surfaced entity scores 0.0, rising linearly over recency_window

Ranking is by score descending, ties broken by pool order. Ranked entities
are partitioned into immediate (score >= immediate_threshold and available),
upcoming (score >= exclusion_floor) and excluded.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from gm_director.cache import ResultCache, cache_key
from gm_director.models import (
    ENTITY_TYPES,
    Entity,
    EntityQuery,
    GameContext,
    Recommendation,
    RecommendationResult,
)
from gm_director.pools import EntityPoolStore, PoolNotFound

logger = logging.getLogger(__name__)

ALGORITHM = "weighted-context-v1"

MATCH = 1.0
UNDECLARED = 0.5
MISMATCH = 0.0


class InvalidEntityType(ValueError):
    """Raised when a recommendation is requested for an unknown entity type."""


class ScoringPolicy(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    fit_weight: float = Field(default=0.5, ge=0)
    timing_weight: float = Field(default=0.3, ge=0)
    recency_weight: float = Field(default=0.2, ge=0)
    location_weight: float = Field(default=0.6, ge=0)
    mood_weight: float = Field(default=0.25, ge=0)
    time_weight: float = Field(default=0.15, ge=0)
    immediate_threshold: float = Field(default=0.7, ge=0, le=1)
    exclusion_floor: float = Field(default=0.3, ge=0, le=1)
    recency_window: int = Field(default=5, ge=1)

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> ScoringPolicy:
        return cls.model_validate(config.get("scoring", {}))


class ScoreBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: float
    fit: float
    timing: float
    recency: float
    location_match: bool = False
    mood_match: bool = False
    milestone: str = "none"

    def reasoning(self) -> str:
        parts = []
        if self.location_match:
            parts.append("present at the current location")
        if self.mood_match:
            parts.append("fits the current mood")
        if self.milestone == "active":
            parts.append("tied to an active milestone")
        elif self.milestone == "completed":
            parts.append("milestone already completed")
        elif self.milestone == "pending":
            parts.append("milestone not reached yet")
        if self.recency < 1.0:
            parts.append("surfaced recently")
        summary = "; ".join(parts) or "no strong contextual signal"
        return f"{summary} (fit {self.fit:.2f}, timing {self.timing:.2f}, recency {self.recency:.2f})"


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def _factor(declared: Sequence[str], actual: str | None) -> float:
    if not declared or actual is None:
        return UNDECLARED
    return MATCH if actual in declared else MISMATCH


def _timing(entity: Entity, context: GameContext) -> tuple[float, str]:
    milestone = entity.milestone_id
    if milestone is None:
        return 0.6, "none"
    if milestone in context.active_milestone_ids:
        return 1.0, "active"
    if milestone in context.completed_milestone_ids:
        return 0.3, "completed"
    return 0.2, "pending"


def _recency(entity: Entity, context: GameContext, window: int) -> float:
    try:
        position = context.recent_entity_ids.index(entity.id)
    except ValueError:
        return 1.0
    return min(1.0, position / window)


def score_entity(entity: Entity, context: GameContext, policy: ScoringPolicy) -> ScoreBreakdown:
    location = _factor((entity.location_id,) if entity.location_id else (), context.location_id)
    mood = _factor(entity.moods, context.mood)
    time_of_day = _factor(entity.times_of_day, context.time_of_day)

    fit_total = policy.location_weight + policy.mood_weight + policy.time_weight
    fit = (
        (policy.location_weight * location + policy.mood_weight * mood + policy.time_weight * time_of_day)
        / fit_total if fit_total else 0.0
    )
    timing, milestone = _timing(entity, context)
    recency = _recency(entity, context, policy.recency_window)

    total = policy.fit_weight + policy.timing_weight + policy.recency_weight
    score = (
        (policy.fit_weight * fit + policy.timing_weight * timing + policy.recency_weight * recency)
        / total if total else 0.0
    )
    return ScoreBreakdown(
        score=round(min(1.0, max(0.0, score)), 4),
        fit=fit,
        timing=timing,
        recency=recency,
        location_match=location == MATCH,
        mood_match=mood == MATCH,
        milestone=milestone,
    )


def rank(
    entities: Sequence[Entity], context: GameContext, policy: ScoringPolicy
) -> list[tuple[Entity, ScoreBreakdown]]:
    """Score and sort by relevance descending; equal scores keep pool order."""
    scored = [(entity, score_entity(entity, context, policy)) for entity in entities]
    return sorted(scored, key=lambda pair: -pair[1].score)


def partition(
    ranked: Sequence[tuple[Entity, float]], policy: ScoringPolicy
) -> tuple[list[tuple[Entity, float]], list[tuple[Entity, float]], list[tuple[Entity, float]]]:
    """Split (entity, score) pairs into (immediate, upcoming, excluded)."""
    immediate, upcoming, excluded = [], [], []
    for entity, score in ranked:
        if score >= policy.immediate_threshold and entity.available:
            immediate.append((entity, score))
        elif score >= policy.exclusion_floor:
            upcoming.append((entity, score))
        else:
            excluded.append((entity, score))
    return immediate, upcoming, excluded


def expected_impact(score: float) -> str:
    if score >= 0.8:
        return "high"
    if score >= 0.5:
        return "medium"
    return "low"


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class RecommendationEngine:
    """Scores pool entities against a GameContext, caching results.

    The pool for a context is the session's pool when one exists, otherwise
    the campaign's. A missing pool means no entities. Consumed entities are
    never returned.
    """

    def __init__(
        self,
        pools: EntityPoolStore,
        cache: ResultCache,
        policy: ScoringPolicy | None = None,
        ttl: float | None = None,
    ) -> None:
        self._pools = pools
        self._cache = cache
        self._policy = policy or ScoringPolicy()
        self._ttl = ttl

    @property
    def policy(self) -> ScoringPolicy:
        return self._policy

    def _pool_ids(self, context: GameContext) -> list[str]:
        return list(dict.fromkeys(i for i in (context.session_id, context.campaign_id) if i))

    def _tags(self, context: GameContext) -> list[str]:
        tags = [f"pool:{pool_id}" for pool_id in self._pool_ids(context)]
        if context.campaign_id:
            tags.append(f"campaign:{context.campaign_id}")
        return tags

    def _load_entities(self, context: GameContext) -> list[Entity]:
        for pool_id in self._pool_ids(context):
            try:
                entities = self._pools.get_entities(pool_id)
            except PoolNotFound:
                continue
            logger.debug("entities loaded pool=%s count=%d", pool_id, len(entities))
            return [e for e in entities if e.status != "consumed"]
        return []

    async def query_entities(
        self,
        query: EntityQuery,
        context: GameContext,
        max_results: int = 50,
    ) -> tuple[Entity, ...]:
        """Entities of the requested types at the query location, most relevant first.

        Entities without a location match any location. Each returned entity
        carries its computed relevance_score.
        """
        for entity_type in query.types:
            if entity_type not in ENTITY_TYPES:
                raise InvalidEntityType(entity_type)

        async def compute() -> tuple[Entity, ...]:
            candidates = [
                e for e in self._load_entities(context)
                if (not query.types or e.type in query.types)
                and (query.location_id is None or e.location_id in (None, query.location_id))
            ]
            ranked = rank(candidates, context, self._policy)[:max_results]
            return tuple(
                entity.model_copy(update={"relevance_score": breakdown.score})
                for entity, breakdown in ranked
            )

        key = cache_key(
            "entities", context,
            query=query.model_dump(mode="json"), max_results=max_results,
            policy=self._policy.model_dump(),
        )
        return await self._cache.get_or_compute(key, compute, ttl=self._ttl, tags=self._tags(context))

    async def recommend(
        self,
        entity_type: str,
        context: GameContext,
        max_recommendations: int = 5,
    ) -> RecommendationResult:
        if entity_type not in ENTITY_TYPES:
            raise InvalidEntityType(entity_type)

        async def compute() -> RecommendationResult:
            entities = [e for e in self._load_entities(context) if e.type == entity_type]
            ranked = rank(entities, context, self._policy)
            breakdowns = {entity.id: breakdown for entity, breakdown in ranked}
            immediate, upcoming, _ = partition(
                [(entity, breakdown.score) for entity, breakdown in ranked], self._policy
            )

            recommendations = [
                Recommendation(
                    entity_id=entity.id,
                    relevance_score=score,
                    reasoning=breakdowns[entity.id].reasoning(),
                    suggested_timing=timing,
                    expected_impact=expected_impact(score),
                )
                for timing, bucket in (("immediate", immediate), ("upcoming", upcoming))
                for entity, score in bucket
            ][:max_recommendations]

            confidence = (
                sum(r.relevance_score for r in recommendations) / len(recommendations)
                if recommendations else 0.0
            )
            logger.info(
                "recommend type=%s candidates=%d returned=%d",
                entity_type, len(entities), len(recommendations),
            )
            return RecommendationResult(
                recommendations=tuple(recommendations),
                algorithm=ALGORITHM,
                confidence=round(confidence, 4),
            )

        key = cache_key(
            "recommend", context,
            entity_type=entity_type, max_recommendations=max_recommendations,
            policy=self._policy.model_dump(),
        )
        return await self._cache.get_or_compute(key, compute, ttl=self._ttl, tags=self._tags(context))

    def invalidate_campaign(self, campaign_id: str) -> int:
        return self._cache.invalidate_tag(f"campaign:{campaign_id}")

    def invalidate_pool(self, pool_id: str) -> int:
        return self._cache.invalidate_tag(f"pool:{pool_id}")

    def statistics(self) -> dict[str, Any]:
        return {
            "algorithm": ALGORITHM,
            "cache": self._cache.stats(),
            "policy": self._policy.model_dump(),
        }
