"""Recorded media: listing and byte-range playback.

Routes:
    GET /api/videos               recordings, newest first
    GET /recordings/{filename}    file body; honours a single ``Range`` header

Playback streams the file in chunks from a worker thread, so large recordings
never sit in memory.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, status
from fastapi.responses import StreamingResponse

from .. import metrics
from ..services.container import get_media_catalog
from ..services.exceptions import MediaNotFound, RangeNotSatisfiable
from ..services.media_catalog import MediaCatalog, iter_file
from .errors import raise_not_found, raise_range_not_satisfiable

logger = logging.getLogger(__name__)

router = APIRouter(tags=["media"])


@router.get("/api/videos")
async def list_videos(catalog: MediaCatalog = Depends(get_media_catalog)) -> list[dict[str, Any]]:
    return [m.to_dict() for m in catalog.list_media()]


@router.get("/recordings/{filename}")
async def get_recording(
    filename: str,
    range_header: Optional[str] = Header(None, alias="Range"),
    catalog: MediaCatalog = Depends(get_media_catalog),
) -> StreamingResponse:
    """Serve a recording, whole (200) or partially (206).

    Responses:
        404: no such recording, or a name reaching outside the directory
        416: range outside the file or malformed; Content-Range: bytes */size
    """
    try:
        media = catalog.prepare(filename, range_header)
    except MediaNotFound:
        metrics.media_requests_total.labels(status="404").inc()
        raise_not_found("file", filename)
    except RangeNotSatisfiable as e:
        metrics.media_requests_total.labels(status="416").inc()
        logger.info(f"Unsatisfiable range for {filename}: {e.range_header!r} (size {e.file_size})")
        raise_range_not_satisfiable(e)

    code = status.HTTP_206_PARTIAL_CONTENT if media.partial else status.HTTP_200_OK
    metrics.media_requests_total.labels(status=str(code)).inc()
    logger.debug(f"Serving {filename}: {media.span.start}-{media.span.end}/{media.span.size} ({code})")
    return StreamingResponse(
        iter_file(media.path, media.span.start, media.span.end),
        status_code=code,
        media_type=media.content_type,
        headers=media.headers,
    )
