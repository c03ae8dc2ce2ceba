"""Tests for gm_director.pools: legacy/two-tier parsing and the pool store."""

import pytest

from gm_director.models import Enemy, Item, NPC
from gm_director.pools import (
    EntityPoolStore,
    LayerConflict,
    LegacyFlatPool,
    PoolNotFound,
    StatusRegression,
    TwoTierPool,
    normalize_pool,
    parse_pool_document,
)
from gm_director.storage import Storage

LEGACY = {
    "enemies": [{"id": "goblin", "name": "Goblin", "healthPoints": 7}],
    "npcs": [{"id": "mira", "name": "Mira", "role": "elder"}],
    "items": [{"id": "rope", "name": "Rope"}],
}

TWO_TIER = {
    "coreEntities": {
        "enemies": [{"id": "goblin", "name": "Goblin", "healthPoints": 7}],
        "npcs": [{"id": "mira", "name": "Mira", "role": "elder"}],
        "items": [{"id": "rope", "name": "Rope"}],
    },
    "bonusEntities": {
        "trophyItems": [{"id": "fang", "name": "Goblin Fang"}],
    },
}


@pytest.fixture
def pools(tmp_path) -> EntityPoolStore:
    return EntityPoolStore(Storage(tmp_path))


# ── Parsing ─────────────────────────────────────────────────


def test_parse_picks_shape():
    assert isinstance(parse_pool_document(LEGACY), LegacyFlatPool)
    assert isinstance(parse_pool_document(TWO_TIER), TwoTierPool)


def test_legacy_and_two_tier_core_are_equivalent():
    legacy = normalize_pool(LEGACY)
    two_tier = normalize_pool(TWO_TIER)
    assert legacy.core_entities == two_tier.core_entities
    assert legacy.bonus_entities.trophy_items == ()
    assert [e.id for e in two_tier.bonus_entities.trophy_items] == ["fang"]


def test_missing_type_injected_from_collection():
    pool = normalize_pool(LEGACY)
    assert isinstance(pool.core_entities.enemies[0], Enemy)
    assert pool.core_entities.enemies[0].health_points == 7
    assert isinstance(pool.core_entities.npcs[0], NPC)
    assert normalize_pool(TWO_TIER).bonus_entities.trophy_items[0].type == "item"


def test_snake_case_two_tier_keys():
    pool = normalize_pool({"core_entities": {}, "bonus_entities": {"mystery_items": [{"id": "m", "name": "M"}]}})
    assert pool.bonus_entities.mystery_items[0].id == "m"


# ── Store ───────────────────────────────────────────────────


def test_missing_pool_raises(pools):
    with pytest.raises(PoolNotFound):
        pools.get_pool("nope")


def test_reads_legacy_pool(pools, tmp_path):
    Storage(tmp_path).write_pool_document("p1", LEGACY)
    assert [e.id for e in pools.get_entities("p1")] == ["goblin", "mira", "rope"]
    assert [e.id for e in pools.get_entities("p1", entity_type="npc")] == ["mira"]
    assert pools.get_entities("p1", category="bonus") == []


def test_get_entities_core_first(pools, tmp_path):
    Storage(tmp_path).write_pool_document("p1", TWO_TIER)
    assert [e.id for e in pools.get_entities("p1")] == ["goblin", "mira", "rope", "fang"]
    assert [e.id for e in pools.get_entities("p1", category="bonus")] == ["fang"]
    assert [e.id for e in pools.get_entities("p1", entity_type="item")] == ["rope", "fang"]


def test_get_entities_rejects_unknown_type(pools, tmp_path):
    Storage(tmp_path).write_pool_document("p1", LEGACY)
    with pytest.raises(ValueError):
        pools.get_entities("p1", entity_type="dragon")


def test_count_by_type(pools, tmp_path):
    Storage(tmp_path).write_pool_document("p1", TWO_TIER)
    assert pools.count_by_type("p1") == {"item": 2, "quest": 0, "event": 0, "npc": 1, "enemy": 1}


def test_upsert_creates_pool(pools):
    pools.upsert_entity("fresh", Item(id="rope", name="Rope"))
    assert [e.id for e in pools.get_pool("fresh").core_entities.items] == ["rope"]


def test_upsert_replaces_in_place(pools, tmp_path):
    Storage(tmp_path).write_pool_document("p1", LEGACY)
    pools.upsert_entity("p1", NPC(id="mira", name="Elder Mira", role="elder"))
    npcs = pools.get_pool("p1").core_entities.npcs
    assert len(npcs) == 1
    assert npcs[0].name == "Elder Mira"


def test_upsert_rejects_layer_change(pools, tmp_path):
    Storage(tmp_path).write_pool_document("p1", TWO_TIER)
    with pytest.raises(LayerConflict):
        pools.upsert_entity("p1", Item(id="fang", name="Fang"), category="core")
    with pytest.raises(LayerConflict):
        pools.upsert_entity("p1", Item(id="rope", name="Rope"), category="bonus")


def test_upsert_rejects_wrong_core_collection(pools):
    with pytest.raises(ValueError):
        pools.upsert_entity("p1", Item(id="rope", name="Rope"), collection="enemies")


def test_upsert_bonus_collection(pools):
    pools.upsert_entity("p1", Item(id="gem", name="Gem"), category="bonus", collection="mystery_items")
    assert [e.id for e in pools.get_pool("p1").bonus_entities.mystery_items] == ["gem"]


def test_write_upgrades_legacy_to_two_tier(pools, tmp_path):
    storage = Storage(tmp_path)
    storage.write_pool_document("p1", LEGACY)
    pools.upsert_entity("p1", Item(id="torch", name="Torch"))
    document = storage.read_pool_document("p1")
    assert "coreEntities" in document
    assert [e["id"] for e in document["coreEntities"]["items"]] == ["rope", "torch"]


def test_on_change_called_after_write(tmp_path):
    changed: list[str] = []
    pools = EntityPoolStore(Storage(tmp_path), on_change=changed.append)
    pools.upsert_entity("p1", Item(id="rope", name="Rope"))
    pools.advance_status("p1", "rope", "discovered")
    assert changed == ["p1", "p1"]


def test_advance_status_forward_only(pools):
    pools.upsert_entity("p1", Item(id="rope", name="Rope"))
    assert pools.advance_status("p1", "rope", "discovered").status == "discovered"
    assert pools.advance_status("p1", "rope", "consumed").status == "consumed"
    with pytest.raises(StatusRegression):
        pools.advance_status("p1", "rope", "discovered")
    assert pools.get_entities("p1")[0].status == "consumed"


def test_advance_status_unknown_entity(pools):
    pools.upsert_entity("p1", Item(id="rope", name="Rope"))
    with pytest.raises(KeyError):
        pools.advance_status("p1", "ghost", "discovered")
