"""Health check, settings, and provider status endpoints."""

from fastapi import APIRouter

from backend.services import get_services

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/settings")
async def get_settings():
    """Get global settings (connections, fallback order, resilience, scoring, cache)."""
    return get_services().storage.get_config()


@router.patch("/settings")
async def update_settings(body: dict):
    """Update global settings (partial merge). Rebuilds providers and clears the cache."""
    return get_services().update_settings(body)


@router.get("/providers")
async def list_providers():
    """Narration providers in fallback order with their circuit breaker state."""
    return get_services().chain.breaker_states()
