"""Entity pool endpoints (read, upsert, status transitions)."""

from fastapi import APIRouter, HTTPException, Query
from pydantic import ValidationError

from backend.services import get_services
from gm_director.models import parse_entity
from gm_director.pools import LayerConflict, PoolNotFound, StatusRegression

from .models import UpdateEntityStatus, UpsertEntity, validation_detail

router = APIRouter()


@router.get("/entity-pools/{pool_id}")
async def get_entity_pool(pool_id: str):
    """Full two-tier pool with per-type counts."""
    pools = get_services().pools
    try:
        pool = pools.get_pool(pool_id)
    except PoolNotFound:
        raise HTTPException(404, "Pool not found")
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {
        "poolId": pool_id,
        **pool.model_dump(by_alias=True, mode="json"),
        "counts": pools.count_by_type(pool_id),
    }


@router.get("/entity-pools/{pool_id}/entities")
async def list_pool_entities(
    pool_id: str,
    category: str | None = Query(None, pattern="^(core|bonus)$"),
    entity_type: str | None = Query(None, alias="type"),
):
    """Entities of a pool, optionally filtered by layer and type."""
    try:
        entities = get_services().pools.get_entities(pool_id, category, entity_type)
    except PoolNotFound:
        raise HTTPException(404, "Pool not found")
    except ValueError as e:
        raise HTTPException(400, str(e))
    return [e.model_dump(by_alias=True, mode="json") for e in entities]


@router.post("/entity-pools/{pool_id}/entities", status_code=201)
async def upsert_pool_entity(pool_id: str, body: UpsertEntity):
    """Insert or replace an entity; creates the pool if needed."""
    try:
        entity = parse_entity(body.entity)
    except ValidationError as e:
        raise HTTPException(400, validation_detail(e))
    try:
        stored = get_services().pools.upsert_entity(pool_id, entity, body.category, body.collection)
    except LayerConflict as e:
        raise HTTPException(409, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    return stored.model_dump(by_alias=True, mode="json")


@router.patch("/entity-pools/{pool_id}/entities/{entity_id}/status")
async def update_entity_status(pool_id: str, entity_id: str, body: UpdateEntityStatus):
    """Move an entity forward: undiscovered → discovered → consumed."""
    try:
        entity = get_services().pools.advance_status(pool_id, entity_id, body.status)
    except PoolNotFound:
        raise HTTPException(404, "Pool not found")
    except KeyError:
        raise HTTPException(404, "Entity not found")
    except StatusRegression as e:
        raise HTTPException(409, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    return entity.model_dump(by_alias=True, mode="json")
