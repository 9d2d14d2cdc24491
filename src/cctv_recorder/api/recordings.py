"""REST API endpoints for recording sessions.

Routes (mounted under /api):
    POST /start-record       start recording a camera
    POST /stop-record        stop one camera, or all with stopAll=true
    GET  /recording-status   active sessions

Domain exceptions from RecordingsService are translated here into the
standardized error responses of ``api.errors``.

Logging Strategy:
    INFO  - Start/stop requests
    WARN  - Refused starts (busy, no space)
    ERROR - Encoder spawn/stop failures
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends

from ..models.recording import StartRecordRequest, StopRecordRequest
from ..services.container import get_recordings_service
from ..services.exceptions import (
    CameraBusy,
    ControlChannelError,
    DiskCheckFailed,
    InsufficientDiskSpace,
    MissingParameter,
    ProcessSpawnFailure,
)
from ..services.recordings_service import RecordingsService
from .errors import (
    ErrorCode,
    raise_camera_busy,
    raise_insufficient_storage,
    raise_process_error,
    raise_validation_error,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["recordings"])


@router.post("/start-record")
async def start_record(
    body: Optional[StartRecordRequest] = Body(None),
    service: RecordingsService = Depends(get_recordings_service),
) -> dict[str, Any]:
    """Start recording ``camId`` from ``streamId``.

    Responses:
        200: {"status": "started", "camId": ..., "filename": ...}
        400: camId missing
        409: camera already recording (details.heldBy)
        507: not enough free space (details.freeGB / minFreeGB)
        500: ffmpeg could not be started
    """
    body = body or StartRecordRequest()
    logger.info(f"Start record request: cam={body.cam_id}, user={body.user}, bill={body.bill_id}, type={body.record_type}")
    try:
        return await service.start(
            body.cam_id,
            user=body.user,
            bill_id=body.bill_id,
            record_type=body.record_type,
            stream_id=body.stream_id,
        )
    except MissingParameter as e:
        raise_validation_error(str(e), {"field": e.field})
    except CameraBusy as e:
        logger.warning(f"Start refused: {e}")
        raise_camera_busy(e)
    except (InsufficientDiskSpace, DiskCheckFailed) as e:
        raise_insufficient_storage(e)
    except ProcessSpawnFailure as e:
        raise_process_error(ErrorCode.PROCESS_SPAWN_FAILED, "Failed to start recording", e)


@router.post("/stop-record")
async def stop_record(
    body: Optional[StopRecordRequest] = Body(None),
    service: RecordingsService = Depends(get_recordings_service),
) -> dict[str, Any]:
    """Stop one camera (``camId``) or every camera (``stopAll``)."""
    body = body or StopRecordRequest()
    if body.stop_all:
        logger.info("Stop all recordings request")
        return await service.stop_all()

    try:
        return await service.stop(body.cam_id)
    except MissingParameter as e:
        raise_validation_error(str(e), {"field": e.field})
    except ControlChannelError as e:
        raise_process_error(ErrorCode.STOP_FAILED, "Failed to stop recording", e)


@router.get("/recording-status")
async def recording_status(
    service: RecordingsService = Depends(get_recordings_service),
) -> dict[str, Any]:
    return service.status()
