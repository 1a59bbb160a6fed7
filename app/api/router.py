"""
Main API router. Mounts all sub-routers.
"""

from fastapi import APIRouter, Depends

from ..core.dependencies import get_sessions
from ..services.session_manager import SessionManager

router = APIRouter()


# ── Health ───────────────────────────────────────────────────────────

@router.get("/health")
async def health(sessions: SessionManager = Depends(get_sessions)):
    from ..core.redis import ping

    redis_ok = await ping()
    return {
        "status": "ok" if redis_ok is not False else "degraded",
        "service": "voice-intake",
        "active_sessions": sessions.active_count(),
        "redis": redis_ok,
    }


# ── Public config ────────────────────────────────────────────────────

@router.get("/config")
async def public_config():
    from ..agents.insurance.handler import DISPLAY_NAME
    from ..core.config import get_settings
    from ..core.flags import get_flags

    settings = get_settings()
    flags = get_flags()
    return {
        "agent": DISPLAY_NAME,
        "model": settings.realtime_model,
        "voice": settings.realtime_voice,
        "audio": {"format": "pcm16", "sample_rate": settings.audio_sample_rate, "channels": 1},
        "session_timeout_ms": settings.session_timeout_ms,
        "max_concurrent_sessions": settings.max_concurrent_sessions,
        "features": {
            "record_audio": flags.record_audio,
            "mask_pii": flags.mask_pii,
            "vehicle_catalog": flags.use_vehicle_catalog,
        },
    }


# ── V1 routes ────────────────────────────────────────────────────────

from .admin import admin_router
from .conversations import conversations_router
from .sessions import sessions_router
from .voice import voice_router

router.include_router(sessions_router, prefix="/v1")
router.include_router(conversations_router, prefix="/v1")
router.include_router(admin_router, prefix="/v1")
router.include_router(voice_router, prefix="/v1")
