"""Trigger-chain endpoint: one player or GM action in, one GM response out."""

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Request

from backend.services import get_services
from gm_director.models import TriggerRequest
from gm_director.pipeline import (
    ChainError,
    ChainValidationError,
    NarrationCircuitOpen,
    NarrationUnavailable,
    chain_error_detail,
)

logger = logging.getLogger(__name__)

router = APIRouter()

DISCONNECT_POLL_SECONDS = 0.5


async def _cancel_on_disconnect(request: Request, task: asyncio.Task) -> None:
    while not task.done():
        if await request.is_disconnected():
            logger.info("client disconnected, cancelling trigger chain")
            task.cancel()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@router.post("/trigger-chain")
async def trigger_chain(body: TriggerRequest, request: Request):
    """Run the trigger chain for a player or GM action."""
    task = asyncio.ensure_future(get_services().orchestrator.trigger(body))
    watcher = asyncio.ensure_future(_cancel_on_disconnect(request, task))
    try:
        result = await task
    except ChainValidationError as e:
        raise HTTPException(400, chain_error_detail(e))
    except (NarrationUnavailable, NarrationCircuitOpen) as e:
        raise HTTPException(503, chain_error_detail(e))
    except ChainError as e:
        raise HTTPException(500, chain_error_detail(e))
    except asyncio.CancelledError:
        if watcher.done() and not watcher.cancelled():
            raise HTTPException(499, "Client disconnected")
        raise
    finally:
        watcher.cancel()
    return result.model_dump(by_alias=True, mode="json")
