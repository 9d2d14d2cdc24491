"""Service container for singleton instances.

Holds the global service instances so API modules can reach them without
importing ``main``. Pattern: main.py lifespan creates services -> container
stores them -> API routes receive them through ``Depends(get_*)``.

All requests must share ONE RecordingsService: the camera -> session registry
and the per-camera locks live on that instance.

Logging Strategy:
    DEBUG - Service dependency injection
    ERROR - Service not initialized (startup failed)
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .media_catalog import MediaCatalog
    from .recordings_service import RecordingsService
    from .retention import RetentionSweeper
    from .system_control import SystemControl

logger = logging.getLogger(__name__)

# ============================================================================
# Global Singleton Instances
# ============================================================================

recordings_service: RecordingsService | None = None
media_catalog: MediaCatalog | None = None
system_control: SystemControl | None = None
retention_sweeper: RetentionSweeper | None = None


def _require(service, name: str):
    if service is None:
        logger.error(f"{name} dependency requested before initialization")
        raise RuntimeError(f"{name} not initialized. Application startup may have failed.")
    logger.debug(f"Injecting {name} singleton")
    return service


# ============================================================================
# Dependency Injection
# ============================================================================

def get_recordings_service() -> RecordingsService:
    """Get the RecordingsService singleton.

    Raises:
        RuntimeError: If called before app startup
    """
    return _require(recordings_service, "RecordingsService")


def get_media_catalog() -> MediaCatalog:
    return _require(media_catalog, "MediaCatalog")


def get_system_control() -> SystemControl:
    return _require(system_control, "SystemControl")
