"""Tests for /api/entity-pools, /api/recommendations and session/campaign state."""

import pytest


@pytest.fixture
def pool(client):
    for entity in (
        {"type": "npc", "id": "elder", "name": "Elder Mira", "locationId": "square"},
        {"type": "item", "id": "rope", "name": "Rope", "locationId": "square"},
    ):
        assert client.post("/api/entity-pools/c1/entities", json={"entity": entity}).status_code == 201
    client.post("/api/entity-pools/c1/entities", json={
        "category": "bonus",
        "collection": "trophy_items",
        "entity": {"type": "item", "id": "fang", "name": "Wolf Fang"},
    })
    return "c1"


# ── Entity pools ────────────────────────────────────────────


def test_get_pool(client, pool):
    resp = client.get(f"/api/entity-pools/{pool}")
    assert resp.status_code == 200
    body = resp.json()
    assert body["poolId"] == "c1"
    assert [e["id"] for e in body["coreEntities"]["npcs"]] == ["elder"]
    assert [e["id"] for e in body["bonusEntities"]["trophyItems"]] == ["fang"]
    assert body["counts"]["item"] == 2
    assert body["counts"]["npc"] == 1
    assert body["counts"]["enemy"] == 0


def test_missing_pool(client):
    assert client.get("/api/entity-pools/nowhere").status_code == 404


def test_invalid_pool_id(client):
    assert client.get("/api/entity-pools/..").status_code in (400, 404)
    assert client.get("/api/entity-pools/bad%20id").status_code == 400


def test_list_entities_filtered(client, pool):
    resp = client.get(f"/api/entity-pools/{pool}/entities", params={"type": "item"})
    assert [e["id"] for e in resp.json()] == ["rope", "fang"]

    resp = client.get(f"/api/entity-pools/{pool}/entities", params={"category": "bonus"})
    assert [e["id"] for e in resp.json()] == ["fang"]

    assert client.get(f"/api/entity-pools/{pool}/entities", params={"type": "dragon"}).status_code == 400
    assert client.get(f"/api/entity-pools/{pool}/entities", params={"category": "extra"}).status_code == 422


def test_upsert_replaces_entity(client, pool):
    resp = client.post(f"/api/entity-pools/{pool}/entities", json={
        "entity": {"type": "npc", "id": "elder", "name": "Elder Mira", "description": "Knows too much."},
    })
    assert resp.status_code == 201
    npcs = client.get(f"/api/entity-pools/{pool}/entities", params={"type": "npc"}).json()
    assert len(npcs) == 1
    assert npcs[0]["description"] == "Knows too much."


def test_upsert_rejects_bad_entity(client):
    resp = client.post("/api/entity-pools/c1/entities", json={"entity": {"type": "npc", "name": "No id"}})
    assert resp.status_code == 400


def test_upsert_rejects_wrong_collection(client):
    resp = client.post("/api/entity-pools/c1/entities", json={
        "collection": "enemies",
        "entity": {"type": "npc", "id": "x", "name": "X"},
    })
    assert resp.status_code == 400


def test_upsert_layer_conflict(client, pool):
    resp = client.post(f"/api/entity-pools/{pool}/entities", json={
        "category": "bonus",
        "entity": {"type": "item", "id": "rope", "name": "Rope"},
    })
    assert resp.status_code == 409


def test_status_moves_forward_only(client, pool):
    url = f"/api/entity-pools/{pool}/entities/rope/status"
    resp = client.patch(url, json={"status": "discovered"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "discovered"

    assert client.patch(url, json={"status": "undiscovered"}).status_code == 409
    assert client.patch(url, json={"status": "consumed"}).json()["status"] == "consumed"


def test_status_unknown_entity_or_pool(client, pool):
    assert client.patch(f"/api/entity-pools/{pool}/entities/ghost/status", json={"status": "discovered"}).status_code == 404
    assert client.patch("/api/entity-pools/nowhere/entities/rope/status", json={"status": "discovered"}).status_code == 404
    assert client.patch(f"/api/entity-pools/{pool}/entities/rope/status", json={"status": "lost"}).status_code == 422


# ── Recommendations ─────────────────────────────────────────


def test_recommendations(client, pool):
    client.patch("/api/campaigns/c1", json={"defaultMood": "calm"})
    client.patch("/api/sessions/s1", json={"campaignId": "c1", "currentLocation": "square"})

    resp = client.get("/api/recommendations", params={"sessionId": "s1", "entityType": "item"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["algorithm"] == "weighted-context-v1"
    assert [r["entityId"] for r in body["recommendations"]] == ["rope", "fang"]
    assert body["immediate"] == ["rope"]
    assert body["recommendations"][0]["suggestedTiming"] == "immediate"


def test_recommendations_invalid_type(client):
    resp = client.get("/api/recommendations", params={"sessionId": "s1", "entityType": "dragon"})
    assert resp.status_code == 400


def test_recommendations_unknown_session_is_empty(client, pool):
    resp = client.get("/api/recommendations", params={"sessionId": "nobody", "entityType": "npc"})
    assert resp.status_code == 200
    assert resp.json()["recommendations"] == []


def test_pool_write_refreshes_recommendations(client, pool):
    client.patch("/api/sessions/s1", json={"campaignId": "c1"})
    params = {"sessionId": "s1", "entityType": "npc"}
    assert [r["entityId"] for r in client.get("/api/recommendations", params=params).json()["recommendations"]] == ["elder"]

    client.post("/api/entity-pools/c1/entities", json={"entity": {"type": "npc", "id": "smith", "name": "Smith"}})
    ids = [r["entityId"] for r in client.get("/api/recommendations", params=params).json()["recommendations"]]
    assert set(ids) == {"elder", "smith"}


def test_recommendation_stats(client, pool):
    client.patch("/api/sessions/s1", json={"campaignId": "c1"})
    params = {"sessionId": "s1", "entityType": "npc"}
    client.get("/api/recommendations", params=params)
    client.get("/api/recommendations", params=params)

    stats = client.get("/api/recommendations/stats").json()
    assert stats["cache"]["hits"] == 1
    assert stats["cache"]["misses"] == 1


# ── Sessions and campaigns ──────────────────────────────────


def test_session_state_roundtrip(client):
    assert client.get("/api/sessions/s1").status_code == 404
    resp = client.patch("/api/sessions/s1", json={"currentLocation": "inn"})
    assert resp.status_code == 200
    assert resp.json() == {"sessionId": "s1", "currentLocation": "inn"}

    client.patch("/api/sessions/s1", json={"timeOfDay": "night"})
    assert client.get("/api/sessions/s1").json() == {
        "sessionId": "s1", "currentLocation": "inn", "timeOfDay": "night",
    }


def test_campaign_update_drops_cached_recommendations(client, pool):
    client.patch("/api/sessions/s1", json={"campaignId": "c1", "currentLocation": "square"})
    params = {"sessionId": "s1", "entityType": "npc"}
    client.get("/api/recommendations", params=params)

    client.patch("/api/campaigns/c1", json={"defaultMood": "tense"})
    client.get("/api/recommendations", params=params)
    stats = client.get("/api/recommendations/stats").json()["cache"]
    assert stats["misses"] == 2
    assert client.get("/api/campaigns/c1").json()["defaultMood"] == "tense"


def test_invalid_session_id(client):
    assert client.patch("/api/sessions/bad%20id", json={}).status_code == 400
