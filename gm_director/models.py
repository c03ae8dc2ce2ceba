"""Core domain models.

Every component (pool store, recommendation engine, tactics store,
orchestrator) operates on these types. Pydantic validates at every data
boundary; JSON payloads use camelCase names, Python code uses snake_case.

Value objects (GameContext, entities, recommendation results, settings, chain
results) are frozen. Derived data is produced as new objects, never by
mutation.
"""

from __future__ import annotations

import hashlib
import json
from typing import Annotated, Any, Iterator, Literal, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    computed_field,
    model_validator,
)
from pydantic.alias_generators import to_camel

EntityType = Literal["item", "quest", "event", "npc", "enemy"]
ENTITY_TYPES: tuple[str, ...] = ("item", "quest", "event", "npc", "enemy")

EntityStatus = Literal["undiscovered", "discovered", "consumed"]
STATUS_ORDER: dict[str, int] = {"undiscovered": 0, "discovered": 1, "consumed": 2}

Category = Literal["core", "bonus"]

# Core collections hold exactly one entity type each.
CORE_COLLECTIONS: dict[str, str] = {
    "enemies": "enemy",
    "events": "event",
    "npcs": "npc",
    "items": "item",
    "quests": "quest",
}
BONUS_COLLECTIONS: tuple[str, ...] = ("practical_rewards", "trophy_items", "mystery_items")


class CamelModel(BaseModel):
    """Base for models serialised with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenCamelModel(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


def camelize_keys(data: dict[str, Any]) -> dict[str, Any]:
    """Map snake_case keys to camelCase, leaving camelCase keys untouched."""
    return {(to_camel(k) if "_" in k else k): v for k, v in data.items()}


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------

class EntityBase(FrozenCamelModel):
    id: str
    name: str
    description: str = ""
    available: bool = Field(
        default=True, validation_alias=AliasChoices("available", "availability")
    )
    relevance_score: float = Field(default=0.0, ge=0.0, le=1.0)
    location_id: str | None = None
    moods: tuple[str, ...] = ()
    times_of_day: tuple[str, ...] = ()
    milestone_id: str | None = None
    tags: tuple[str, ...] = ()
    status: EntityStatus = "undiscovered"


class Item(EntityBase):
    type: Literal["item"] = "item"
    rarity: str = "common"
    value: int = 0


class Quest(EntityBase):
    type: Literal["quest"] = "quest"
    objectives: tuple[str, ...] = ()
    reward: str = ""


class Event(EntityBase):
    type: Literal["event"] = "event"
    trigger: str = ""


class NPC(EntityBase):
    type: Literal["npc"] = "npc"
    role: str = ""
    disposition: str = "neutral"


class Enemy(EntityBase):
    type: Literal["enemy"] = "enemy"
    health_points: int = Field(default=0, ge=0)
    attack_power: int = Field(default=0, ge=0)
    level: int = 1


Entity = Annotated[Union[Item, Quest, Event, NPC, Enemy], Field(discriminator="type")]
ENTITY_ADAPTER: TypeAdapter[Entity] = TypeAdapter(Entity)


def parse_entity(data: dict[str, Any]) -> Entity:
    return ENTITY_ADAPTER.validate_python(data)


class EntitySummary(FrozenCamelModel):
    """Compact view of an entity handed to the narration step."""

    id: str
    type: EntityType
    name: str
    relevance_score: float

    @classmethod
    def of(cls, entity: Entity) -> EntitySummary:
        return cls(
            id=entity.id, type=entity.type, name=entity.name,
            relevance_score=entity.relevance_score,
        )


# ---------------------------------------------------------------------------
# Entity pools
# ---------------------------------------------------------------------------

class CoreEntities(FrozenCamelModel):
    enemies: tuple[Entity, ...] = ()
    events: tuple[Entity, ...] = ()
    npcs: tuple[Entity, ...] = ()
    items: tuple[Entity, ...] = ()
    quests: tuple[Entity, ...] = ()


class BonusEntities(FrozenCamelModel):
    practical_rewards: tuple[Entity, ...] = ()
    trophy_items: tuple[Entity, ...] = ()
    mystery_items: tuple[Entity, ...] = ()


class EntityPoolCollection(FrozenCamelModel):
    """Two-tier entity pool: core entities plus optional bonus rewards."""

    core_entities: CoreEntities = Field(default_factory=CoreEntities)
    bonus_entities: BonusEntities = Field(default_factory=BonusEntities)

    @model_validator(mode="after")
    def _unique_ids(self) -> EntityPoolCollection:
        seen: set[str] = set()
        for _, _, entity in self.iter_entities():
            if entity.id in seen:
                raise ValueError(f"Duplicate entity id in pool: {entity.id}")
            seen.add(entity.id)
        return self

    def iter_entities(self, category: Category | None = None) -> Iterator[tuple[str, str, Entity]]:
        """Yield (category, collection, entity), core layer first."""
        if category in (None, "core"):
            for name in CORE_COLLECTIONS:
                for entity in getattr(self.core_entities, name):
                    yield "core", name, entity
        if category in (None, "bonus"):
            for name in BONUS_COLLECTIONS:
                for entity in getattr(self.bonus_entities, name):
                    yield "bonus", name, entity

    def find(self, entity_id: str) -> tuple[str, str, Entity] | None:
        for found in self.iter_entities():
            if found[2].id == entity_id:
                return found
        return None


# ---------------------------------------------------------------------------
# Game context
# ---------------------------------------------------------------------------

_SET_FIELDS = ("partyMemberIds", "activeMilestoneIds", "completedMilestoneIds")


class GameContext(FrozenCamelModel):
    """Immutable snapshot of the situation a recommendation is made for."""

    session_id: str
    campaign_id: str
    location_id: str | None = None
    time_of_day: str | None = None
    party_member_ids: frozenset[str] = frozenset()
    recent_action_summaries: tuple[str, ...] = ()
    mood: str | None = None
    active_milestone_ids: frozenset[str] = frozenset()
    completed_milestone_ids: frozenset[str] = frozenset()
    recent_entity_ids: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.session_id or not self.campaign_id

    def canonical_json(self) -> str:
        data = self.model_dump(by_alias=True, mode="json")
        for key in _SET_FIELDS:
            data[key] = sorted(data[key])
        return json.dumps(data, sort_keys=True, separators=(",", ":"))

    def fingerprint(self) -> str:
        return hashlib.sha256(self.canonical_json().encode()).hexdigest()


EMPTY_CONTEXT = GameContext(session_id="", campaign_id="")


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------

class Recommendation(FrozenCamelModel):
    entity_id: str
    relevance_score: float = Field(ge=0.0, le=1.0)
    reasoning: str
    suggested_timing: Literal["immediate", "upcoming"]
    expected_impact: Literal["high", "medium", "low"]


class RecommendationResult(FrozenCamelModel):
    recommendations: tuple[Recommendation, ...] = ()
    algorithm: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    @computed_field
    @property
    def immediate(self) -> tuple[str, ...]:
        return tuple(r.entity_id for r in self.recommendations if r.suggested_timing == "immediate")

    @computed_field
    @property
    def upcoming(self) -> tuple[str, ...]:
        return tuple(r.entity_id for r in self.recommendations if r.suggested_timing == "upcoming")


class EntityQuery(FrozenCamelModel):
    location_id: str | None = None
    types: tuple[EntityType, ...] = ()


# ---------------------------------------------------------------------------
# Agent settings (append-only)
# ---------------------------------------------------------------------------

class TacticsSettings(FrozenCamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="forbid"
    )

    tactics_level: Literal["basic", "reactive", "strategic", "aggressive", "cunning"] = "strategic"
    primary_focus: Literal["damage", "support", "balance", "control", "survival"] = "damage"
    teamwork: bool = True


class CharacterAISettings(FrozenCamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="forbid"
    )

    action_priority: Literal["attack_focus", "healing_focus", "support_focus", "balanced"] = "balanced"
    personality: Literal["aggressive", "cautious", "calm"] = "calm"
    communication_style: Literal["direct", "polite", "casual"] = "polite"


class LogRecord(FrozenCamelModel):
    """One row of a session's append-only agent log."""

    id: str
    session_id: str
    agent_type: str
    subject_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    updated_at: str


class LogPage(FrozenCamelModel):
    logs: tuple[LogRecord, ...] = ()
    total_count: int = 0
    has_more: bool = False


# ---------------------------------------------------------------------------
# Trigger chain
# ---------------------------------------------------------------------------

class TriggerRequest(CamelModel):
    session_id: str = ""
    player_message: str = ""
    campaign_id: str | None = None
    location_id: str | None = None
    participants: list[str] = Field(default_factory=list)
    time_of_day: str | None = None
    mood: str | None = None
    trigger_type: str = "player_action"


class GMResponse(FrozenCamelModel):
    message: str
    suggestions: tuple[str, ...] = ()
    applied_tactics: TacticsSettings
    confidence: float = Field(ge=0.0, le=1.0)


class ContextAnalysis(FrozenCamelModel):
    current_location: str | None = None
    available_entities: tuple[EntitySummary, ...] = ()
    party_status: dict[str, CharacterAISettings] = Field(default_factory=dict)
    environmental_factors: tuple[str, ...] = ()
    entity_lookup_error: str | None = None


class ExecutionInfo(FrozenCamelModel):
    triggered_at: str
    processing_time_ms: int
    entities_processed: int
    steps: tuple[str, ...] = ()


class NarrationInfo(FrozenCamelModel):
    attempted_providers: tuple[str, ...] = ()
    successful_provider: str
    skipped_providers: tuple[str, ...] = ()
    failure_reasons: dict[str, str] = Field(default_factory=dict)
    usage: dict[str, Any] = Field(default_factory=dict)


class ChainResult(FrozenCamelModel):
    chain_id: str
    session_id: str
    gm_response: GMResponse
    context_analysis: ContextAnalysis
    execution_info: ExecutionInfo
    next_actions: tuple[str, ...] = ()
    narration: NarrationInfo
    degradations: tuple[str, ...] = ()
