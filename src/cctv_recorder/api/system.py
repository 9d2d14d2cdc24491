"""System control endpoints (mounted under /api/system).

    POST /start   go2rtc, then both tunnels unless startTunnels=false
    POST /stop    tunnels and/or go2rtc
    GET  /status  liveness, PIDs and tunnel URLs

Step failures are reported in the 200 body (``ok: false``), not as HTTP
errors.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends

from ..models.system import SystemStartRequest, SystemStopRequest
from ..services.container import get_system_control
from ..services.system_control import SystemControl

logger = logging.getLogger(__name__)

router = APIRouter(tags=["system"])


@router.post("/start")
async def system_start(
    body: Optional[SystemStartRequest] = Body(None),
    control: SystemControl = Depends(get_system_control),
) -> dict[str, Any]:
    body = body or SystemStartRequest()
    logger.info(f"System start request (tunnels={body.start_tunnels})")
    return await control.start(start_tunnels=body.start_tunnels)


@router.post("/stop")
async def system_stop(
    body: Optional[SystemStopRequest] = Body(None),
    control: SystemControl = Depends(get_system_control),
) -> dict[str, Any]:
    body = body or SystemStopRequest()
    logger.info(f"System stop request (tunnels={body.stop_tunnels}, go2rtc={body.stop_go2rtc})")
    return await control.stop(stop_tunnels=body.stop_tunnels, stop_go2rtc=body.stop_go2rtc)


@router.get("/status")
async def system_status(control: SystemControl = Depends(get_system_control)) -> dict[str, Any]:
    return control.status()
