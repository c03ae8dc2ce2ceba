"""Entity pool store.

Pools are persisted in one of two shapes:

    legacy flat   {"enemies": [...], "events": [...], "npcs": [...],
                   "items": [...], "quests": [...]}
    two-tier      {"coreEntities": {...same five...},
                   "bonusEntities": {"practicalRewards": [...],
                                     "trophyItems": [...],
                                     "mysteryItems": [...]}}

Both are parsed into a tagged union (LegacyFlatPool | TwoTierPool) and
normalized into one EntityPoolCollection right after load. Writes always
produce the two-tier shape.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from pydantic import Field
from pydantic.alias_generators import to_camel

from gm_director.models import (
    BONUS_COLLECTIONS,
    CORE_COLLECTIONS,
    ENTITY_TYPES,
    STATUS_ORDER,
    BonusEntities,
    CamelModel,
    Category,
    CoreEntities,
    Entity,
    EntityPoolCollection,
    EntityStatus,
    parse_entity,
)
from gm_director.storage import Storage

logger = logging.getLogger(__name__)


class PoolNotFound(LookupError):
    """No pool document exists for the given id."""


class LayerConflict(ValueError):
    """An entity id already lives in the other layer of the pool."""


class StatusRegression(ValueError):
    """A status change would move an entity backwards."""


# ---------------------------------------------------------------------------
# Pool document shapes
# ---------------------------------------------------------------------------

RawEntities = list[dict[str, Any]]


def _typed(raw: RawEntities, entity_type: str) -> list[Entity]:
    return [parse_entity({"type": entity_type, **item}) for item in raw]


def _collection(raw: dict[str, Any], name: str) -> RawEntities:
    return raw.get(to_camel(name)) or raw.get(name) or []


class LegacyFlatPool(CamelModel):
    enemies: RawEntities = Field(default_factory=list)
    events: RawEntities = Field(default_factory=list)
    npcs: RawEntities = Field(default_factory=list)
    items: RawEntities = Field(default_factory=list)
    quests: RawEntities = Field(default_factory=list)

    def normalize(self) -> EntityPoolCollection:
        core = {
            name: _typed(getattr(self, name), entity_type)
            for name, entity_type in CORE_COLLECTIONS.items()
        }
        return EntityPoolCollection(core_entities=CoreEntities(**core))


class TwoTierPool(CamelModel):
    core_entities: dict[str, RawEntities] = Field(default_factory=dict)
    bonus_entities: dict[str, RawEntities] = Field(default_factory=dict)

    def normalize(self) -> EntityPoolCollection:
        core = {
            name: _typed(_collection(self.core_entities, name), entity_type)
            for name, entity_type in CORE_COLLECTIONS.items()
        }
        # Bonus entities are rewards; untyped ones are items.
        bonus = {
            name: _typed(_collection(self.bonus_entities, name), "item")
            for name in BONUS_COLLECTIONS
        }
        return EntityPoolCollection(
            core_entities=CoreEntities(**core),
            bonus_entities=BonusEntities(**bonus),
        )


PoolDocument = LegacyFlatPool | TwoTierPool

_TWO_TIER_KEYS = ("coreEntities", "core_entities", "bonusEntities", "bonus_entities")


def parse_pool_document(data: dict[str, Any]) -> PoolDocument:
    if any(key in data for key in _TWO_TIER_KEYS):
        return TwoTierPool.model_validate(data)
    return LegacyFlatPool.model_validate(data)


def normalize_pool(data: dict[str, Any]) -> EntityPoolCollection:
    return parse_pool_document(data).normalize()


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

Layers = dict[str, dict[str, list[Entity]]]


def _layers(pool: EntityPoolCollection) -> Layers:
    return {
        "core": {name: list(getattr(pool.core_entities, name)) for name in CORE_COLLECTIONS},
        "bonus": {name: list(getattr(pool.bonus_entities, name)) for name in BONUS_COLLECTIONS},
    }


def _build(layers: Layers) -> EntityPoolCollection:
    return EntityPoolCollection(
        core_entities=CoreEntities(**layers["core"]),
        bonus_entities=BonusEntities(**layers["bonus"]),
    )


class EntityPoolStore:
    """Reads and writes entity pools through Storage.

    on_change(pool_id) is called after every successful write so that
    cached results derived from the pool can be dropped.
    """

    def __init__(
        self,
        storage: Storage,
        on_change: Callable[[str], Any] | None = None,
    ) -> None:
        self._storage = storage
        self._on_change = on_change

    def get_pool(self, pool_id: str) -> EntityPoolCollection:
        data = self._storage.read_pool_document(pool_id)
        if data is None:
            raise PoolNotFound(pool_id)
        return normalize_pool(data)

    def get_entities(
        self,
        pool_id: str,
        category: Category | None = None,
        entity_type: str | None = None,
    ) -> list[Entity]:
        if entity_type is not None and entity_type not in ENTITY_TYPES:
            raise ValueError(f"Unknown entity type: {entity_type}")
        pool = self.get_pool(pool_id)
        return [
            entity for _, _, entity in pool.iter_entities(category)
            if entity_type is None or entity.type == entity_type
        ]

    def count_by_type(self, pool_id: str) -> dict[str, int]:
        counts = dict.fromkeys(ENTITY_TYPES, 0)
        for entity in self.get_entities(pool_id):
            counts[entity.type] += 1
        return counts

    def upsert_entity(
        self,
        pool_id: str,
        entity: Entity,
        category: Category = "core",
        collection: str | None = None,
    ) -> Entity:
        """Insert or replace an entity by id. Creates the pool if missing."""
        collection = collection or self._default_collection(category, entity)
        self._check_collection(category, collection, entity)

        try:
            pool = self.get_pool(pool_id)
        except PoolNotFound:
            pool = EntityPoolCollection()
        layers = _layers(pool)

        existing = pool.find(entity.id)
        if existing is not None:
            old_category, old_collection, _ = existing
            if old_category != category:
                raise LayerConflict(
                    f"Entity {entity.id} is a {old_category} entity and cannot move to {category}"
                )
            entries = layers[old_category][old_collection]
            index = next(i for i, e in enumerate(entries) if e.id == entity.id)
            if old_collection == collection:
                entries[index] = entity
            else:
                del entries[index]
                layers[category][collection].append(entity)
        else:
            layers[category][collection].append(entity)

        self._save(pool_id, _build(layers))
        return entity

    def advance_status(self, pool_id: str, entity_id: str, status: EntityStatus) -> Entity:
        """Move an entity forward through undiscovered → discovered → consumed."""
        pool = self.get_pool(pool_id)
        found = pool.find(entity_id)
        if found is None:
            raise KeyError(entity_id)
        category, collection, entity = found
        if STATUS_ORDER[status] < STATUS_ORDER[entity.status]:
            raise StatusRegression(
                f"Entity {entity_id} cannot go from {entity.status} back to {status}"
            )
        if status == entity.status:
            return entity

        updated = entity.model_copy(update={"status": status})
        layers = _layers(pool)
        entries = layers[category][collection]
        entries[next(i for i, e in enumerate(entries) if e.id == entity_id)] = updated
        self._save(pool_id, _build(layers))
        return updated

    # ------------------------------------------------------------------

    @staticmethod
    def _default_collection(category: Category, entity: Entity) -> str:
        if category == "core":
            return next(name for name, t in CORE_COLLECTIONS.items() if t == entity.type)
        return "practical_rewards"

    @staticmethod
    def _check_collection(category: Category, collection: str, entity: Entity) -> None:
        if category == "core":
            if CORE_COLLECTIONS.get(collection) != entity.type:
                raise ValueError(f"Core collection {collection!r} cannot hold a {entity.type}")
        elif collection not in BONUS_COLLECTIONS:
            raise ValueError(f"Unknown bonus collection: {collection!r}")

    def _save(self, pool_id: str, pool: EntityPoolCollection) -> None:
        self._storage.write_pool_document(pool_id, pool.model_dump(by_alias=True, mode="json"))
        logger.info("pool updated pool=%s", pool_id)
        if self._on_change is not None:
            self._on_change(pool_id)
