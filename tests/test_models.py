"""Tests for gm_director.models: entity union, pool invariants, context hashing."""

import pytest
from pydantic import ValidationError

from gm_director.models import (
    EMPTY_CONTEXT,
    Enemy,
    EntityPoolCollection,
    CoreEntities,
    GameContext,
    Item,
    NPC,
    Recommendation,
    RecommendationResult,
    TacticsSettings,
    parse_entity,
)


# ── Entities ────────────────────────────────────────────────


def test_parse_entity_dispatches_on_type():
    enemy = parse_entity({"id": "e1", "type": "enemy", "name": "Goblin", "healthPoints": 7, "attackPower": 3})
    assert isinstance(enemy, Enemy)
    assert enemy.health_points == 7
    assert enemy.attack_power == 3


def test_parse_entity_unknown_type_rejected():
    with pytest.raises(ValidationError):
        parse_entity({"id": "x", "type": "dragon", "name": "Nope"})


def test_availability_alias_accepted():
    item = parse_entity({"id": "i1", "type": "item", "name": "Rope", "availability": False})
    assert item.available is False


def test_relevance_score_bounded():
    with pytest.raises(ValidationError):
        Item(id="i1", name="Rope", relevance_score=1.5)


def test_entity_is_frozen():
    npc = NPC(id="n1", name="Mira")
    with pytest.raises(ValidationError):
        npc.name = "Other"


def test_entity_dump_uses_camel_case():
    data = Enemy(id="e1", name="Goblin", health_points=5).model_dump(by_alias=True)
    assert data["healthPoints"] == 5
    assert data["relevanceScore"] == 0.0
    assert data["type"] == "enemy"


# ── Pools ───────────────────────────────────────────────────


def test_pool_rejects_duplicate_ids_across_layers():
    with pytest.raises(ValidationError):
        EntityPoolCollection.model_validate({
            "coreEntities": {"items": [{"id": "dup", "type": "item", "name": "A"}]},
            "bonusEntities": {"trophyItems": [{"id": "dup", "type": "item", "name": "B"}]},
        })


def test_pool_iter_core_first():
    pool = EntityPoolCollection.model_validate({
        "coreEntities": {"npcs": [{"id": "n1", "type": "npc", "name": "Mira"}]},
        "bonusEntities": {"mysteryItems": [{"id": "m1", "type": "item", "name": "Letter"}]},
    })
    assert [(c, e.id) for c, _, e in pool.iter_entities()] == [("core", "n1"), ("bonus", "m1")]
    assert [e.id for _, _, e in pool.iter_entities("bonus")] == ["m1"]


def test_pool_find():
    pool = EntityPoolCollection(core_entities=CoreEntities(items=(Item(id="i1", name="Rope"),)))
    category, collection, entity = pool.find("i1")
    assert (category, collection, entity.name) == ("core", "items", "Rope")
    assert pool.find("missing") is None


# ── GameContext ─────────────────────────────────────────────


def test_context_fingerprint_ignores_set_order():
    a = GameContext(session_id="s", campaign_id="c", party_member_ids=frozenset({"x", "y", "z"}))
    b = GameContext(session_id="s", campaign_id="c", party_member_ids=frozenset({"z", "y", "x"}))
    assert a.canonical_json() == b.canonical_json()
    assert a.fingerprint() == b.fingerprint()


def test_context_fingerprint_changes_with_content():
    a = GameContext(session_id="s", campaign_id="c", location_id="inn")
    b = GameContext(session_id="s", campaign_id="c", location_id="square")
    assert a.fingerprint() != b.fingerprint()


def test_empty_context():
    assert EMPTY_CONTEXT.is_empty
    assert not GameContext(session_id="s", campaign_id="c").is_empty


# ── Recommendations / settings ──────────────────────────────


def test_recommendation_result_buckets():
    result = RecommendationResult(
        algorithm="test",
        confidence=0.7,
        recommendations=(
            Recommendation(entity_id="a", relevance_score=0.9, reasoning="", suggested_timing="immediate", expected_impact="high"),
            Recommendation(entity_id="b", relevance_score=0.5, reasoning="", suggested_timing="upcoming", expected_impact="medium"),
        ),
    )
    assert result.immediate == ("a",)
    assert result.upcoming == ("b",)
    dumped = result.model_dump(by_alias=True)
    assert dumped["immediate"] == ("a",)
    assert dumped["recommendations"][0]["entityId"] == "a"


def test_tactics_defaults():
    assert TacticsSettings().model_dump(by_alias=True) == {
        "tacticsLevel": "strategic",
        "primaryFocus": "damage",
        "teamwork": True,
    }


def test_tactics_rejects_unknown_fields_and_values():
    with pytest.raises(ValidationError):
        TacticsSettings.model_validate({"tacticsLevel": "reckless"})
    with pytest.raises(ValidationError):
        TacticsSettings.model_validate({"aggression": 3})
