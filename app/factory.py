"""
FastAPI application factory.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import get_settings
from .core.redis import close_redis
from .api.router import router

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Voice Intake",
        description="Conversational auto insurance intake over a realtime voice engine",
        version="1.0.0",
        docs_url="/docs" if settings.env == "development" else None,
        redoc_url="/redoc" if settings.env == "development" else None,
    )

    # ── CORS ─────────────────────────────────────────────────────
    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins if origins != ["*"] else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Startup ──────────────────────────────────────────────────
    @app.on_event("startup")
    async def on_startup():
        logging.basicConfig(
            level=getattr(logging, settings.log_level.upper(), logging.INFO),
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
        logger.info("Starting Voice Intake (env=%s)", settings.env)

        # Initialize tools
        from .tools.registry import init_tools
        init_tools()

        # Expiry sweep
        from .services.session_manager import get_session_manager
        get_session_manager().start_cleanup()

        # Log feature flag state
        from .core.flags import get_flags
        flags = get_flags()
        logger.info(
            "Flags: s3=%s redis=%s record_audio=%s mask_pii=%s extracted_data=%s catalog=%s",
            flags.use_s3, flags.use_redis, flags.record_audio,
            flags.mask_pii, flags.save_extracted_data, flags.use_vehicle_catalog,
        )
        logger.info(
            "Sessions: max=%d timeout=%dms model=%s",
            settings.max_concurrent_sessions, settings.session_timeout_ms, settings.realtime_model,
        )

        logger.info("Voice Intake is ready")

    # ── Shutdown ─────────────────────────────────────────────────
    @app.on_event("shutdown")
    async def on_shutdown():
        from .services.session_manager import get_session_manager
        from .services.vehicle_catalog import close_client
        await get_session_manager().stop_cleanup()
        await close_client()
        await close_redis()
        logger.info("Voice Intake shut down")

    # ── Routes ───────────────────────────────────────────────────
    app.include_router(router)

    return app
