"""Health check and metrics endpoints.

Health Status Levels:
    - healthy: every registered session has a live encoder and the recording
      volume is above the admission threshold
    - degraded: a session's encoder is gone, or new recordings would be refused
    - unhealthy: the health check itself failed (503)

Usage:
    >>> GET /health
    {
        "status": "healthy",
        "recordings": {"active": 1, "cameras": ["2"]},
        "disk": {"freeGB": 120.4, "minFreeGB": 20.0},
        "system": {"go2rtc": true, "tunnelApi": true, "tunnelCam": false}
    }

    >>> GET /health/live
    {"status": "alive"}

Logging Strategy:
    DEBUG - Health check calls
    WARN  - Degraded status with reasons
    ERROR - Health check failures
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Literal

from fastapi import APIRouter, Depends, Response, status

from ..metrics import get_metrics
from ..services.container import get_recordings_service, get_system_control
from ..services.exceptions import DiskCheckFailed
from ..services.recordings_service import RecordingsService
from ..services.system_control import SystemControl
from .errors import raise_service_unavailable

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

HealthStatus = Literal["healthy", "degraded", "unhealthy"]


def collect_problems(service: RecordingsService, free_gb: float | None) -> list[str]:
    problems: list[str] = []
    for cam, session in service.sessions.items():
        if session.process is None or not session.process.running:
            problems.append(f"Camera {cam}: encoder not running")
    if free_gb is None:
        problems.append("Disk space unknown")
    elif free_gb < service.disk_guard.threshold_gb:
        problems.append(f"Disk space low: {free_gb:.2f} GB free")
    return problems


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(
    service: RecordingsService = Depends(get_recordings_service),
    control: SystemControl = Depends(get_system_control),
) -> dict[str, Any]:
    try:
        logger.debug("Processing health check")
        try:
            snap = await asyncio.to_thread(service.disk_guard.snapshot, service.record_dir)
            free_gb: float | None = round(snap.free_gb, 2)
        except DiskCheckFailed:
            free_gb = None

        problems = collect_problems(service, free_gb)
        overall: HealthStatus = "degraded" if problems else "healthy"
        response: dict[str, Any] = {
            "status": overall,
            "recordings": {"active": len(service.sessions), "cameras": list(service.sessions)},
            "disk": {"freeGB": free_gb, "minFreeGB": service.disk_guard.threshold_gb},
            "system": {
                "go2rtc": control.relay.is_running(),
                "tunnelApi": control.tunnel_api.is_running(),
                "tunnelCam": control.tunnel_cam.is_running(),
            },
        }
        if problems:
            response["errors"] = problems
            logger.warning(f"Health check: degraded - {'; '.join(problems)}")
        return response
    except Exception as e:
        logger.error(f"Health check failed with exception: {e}", exc_info=True)
        raise_service_unavailable(f"Health check failed: {e}")


@router.get("/health/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> dict[str, Literal["alive"]]:
    """Liveness probe; checks nothing beyond the event loop answering."""
    return {"status": "alive"}


@router.get("/metrics", include_in_schema=False)
async def metrics_endpoint() -> Response:
    body, code, headers = get_metrics()
    return Response(content=body, status_code=code, headers=headers)
