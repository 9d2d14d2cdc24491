"""FastAPI application entry point for the CCTV recorder.

Architecture:
    - FastAPI async web framework, one event loop
    - ffmpeg subprocesses, one per recording camera
    - go2rtc relay and two cloudflared tunnels, started on demand
    - Singleton services held in ``services.container``

Lifespan:
    startup  -> settings -> services -> recording dir -> retention sweeper
    shutdown -> sweeper stopped -> encoders finalized (then killed)
             -> tunnels and relay stopped

Logging Strategy:
    INFO  - Application lifecycle, configuration summary
    WARN  - Degraded startup
    ERROR - Startup/shutdown failures with stack traces
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .api import health, media, recordings, system
from .api.errors import (
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from .config_io import Settings, get_settings
from .logging_config import configure_logging
from .middleware.request_id import RequestIDMiddleware
from .services import container
from .services.media_catalog import MediaCatalog
from .services.recordings_service import RecordingsService
from .services.retention import RetentionSweeper
from .services.system_control import SystemControl

logger = logging.getLogger(__name__)

# Setup logging before anything else
configure_logging()

# ============================================================================
# Application Lifespan Management
# ============================================================================

def init_services(settings: Settings) -> None:
    """Create the service singletons from ``settings``."""
    recordings_service = RecordingsService(settings)
    container.recordings_service = recordings_service
    container.media_catalog = MediaCatalog(settings.record_dir, settings.record_extension)
    container.system_control = SystemControl(settings)
    container.retention_sweeper = RetentionSweeper(
        settings.record_dir,
        extension=settings.record_extension,
        max_age_days=settings.retention_max_age_days,
        interval_seconds=settings.retention_interval_seconds,
        protected=recordings_service.active_output_paths,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("=" * 80)
    logger.info(f"CCTV recorder {__version__} starting...")
    logger.info("=" * 80)

    settings = getattr(app.state, "settings", None) or get_settings()
    try:
        init_services(settings)
        container.retention_sweeper.start()
    except Exception as e:
        logger.error(f"Startup error: {e}", exc_info=True)
        logger.warning("Starting without recording support")

    logger.info(f"Recording dir: {settings.record_dir}")
    logger.info(f"Min free space: {settings.min_free_gb} GB, retention: {settings.retention_max_age_days} days")
    logger.info(f"Cameras: {', '.join(sorted(settings.cameras))} (default {settings.default_camera})")
    logger.info(f"Listening on {settings.app_host}:{settings.app_port}")
    logger.info("=" * 80)

    yield

    logger.info("=" * 80)
    logger.info("CCTV recorder shutting down...")
    logger.info("=" * 80)

    try:
        if container.retention_sweeper is not None:
            await container.retention_sweeper.stop()
        if container.recordings_service is not None:
            await container.recordings_service.shutdown()
        if container.system_control is not None:
            await container.system_control.stop()
    except Exception as e:
        logger.error(f"Shutdown error: {e}", exc_info=True)

    logger.info("CCTV recorder shutdown complete")


# ============================================================================
# FastAPI Application
# ============================================================================

def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(
        title="CCTV Recorder",
        description=(
            "Per-camera RTSP recording with ffmpeg.\n\n"
            "- Disk admission guard\n"
            "- Byte-range playback of recordings\n"
            "- go2rtc relay and cloudflared tunnel control"
        ),
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore
    app.add_exception_handler(Exception, general_exception_handler)

    # Middleware (reverse order execution)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["Content-Range", "Accept-Ranges", "Content-Length", "X-Request-ID"],
    )

    app.include_router(health.router)
    app.include_router(recordings.router, prefix="/api")
    app.include_router(system.router, prefix="/api/system")
    app.include_router(media.router)
    return app


app = create_app()
