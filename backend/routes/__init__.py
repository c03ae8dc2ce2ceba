"""FastAPI API endpoints under /api.

Endpoint groups: trigger-chain, gm-tactics, character-ai, request-logs,
entity-pools, recommendations, sessions/campaigns, settings.
"""

from fastapi import APIRouter

from .character_ai import router as character_ai_router
from .entity_pools import router as entity_pools_router
from .gm_tactics import router as gm_tactics_router
from .recommendations import router as recommendations_router
from .request_logs import router as request_logs_router
from .sessions import router as sessions_router
from .settings import router as settings_router
from .trigger_chain import router as trigger_chain_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(trigger_chain_router)
router.include_router(gm_tactics_router)
router.include_router(character_ai_router)
router.include_router(request_logs_router)
router.include_router(entity_pools_router)
router.include_router(recommendations_router)
router.include_router(sessions_router)
