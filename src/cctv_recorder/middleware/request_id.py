"""Request ID middleware for request correlation and HTTP metrics.

Assigns a UUID4 to each request (or keeps a client-provided X-Request-ID),
logs the request and the response with timing, and records the
``http_requests_total`` / ``http_request_duration_seconds`` metrics.

Logging Strategy:
    DEBUG - Client-provided IDs, /metrics and /health/live polling
    INFO  - Request start (→) and successful responses (←)
    WARN  - Client errors (4xx)
    ERROR - Server errors (5xx), unhandled exceptions
"""
from __future__ import annotations

import logging
import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .. import metrics

logger = logging.getLogger(__name__)

QUIET_PATHS = frozenset({"/metrics", "/health/live"})
"""Polled by monitoring; logged at DEBUG only."""


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Adds X-Request-ID to every response.

    Usage:
        >>> app.add_middleware(RequestIDMiddleware)
        >>> request.state.request_id  # inside handlers
    """

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID") -> None:
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get(self.header_name)
        if request_id:
            logger.debug(f"Using client-provided request ID: {request_id}")
        else:
            request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        quiet = request.url.path in QUIET_PATHS
        start_time = time.perf_counter()
        logger.log(
            logging.DEBUG if quiet else logging.INFO,
            f"→ {request.method} {request.url.path}",
            extra={"request_id": request_id},
        )

        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.perf_counter() - start_time
            self._observe(request, 500, duration)
            logger.error(
                f"Request {request_id} failed after {duration*1000:.2f}ms: "
                f"{type(e).__name__}: {e}",
                exc_info=True,
                extra={"request_id": request_id}
            )
            raise

        response.headers[self.header_name] = request_id
        duration = time.perf_counter() - start_time
        self._observe(request, response.status_code, duration)
        self._log_response(request, response.status_code, request_id, duration, quiet)
        return response

    @staticmethod
    def _endpoint(request: Request) -> str:
        # route template keeps label cardinality bounded (/recordings/{filename})
        route = request.scope.get("route")
        return getattr(route, "path", None) or "unmatched"

    def _observe(self, request: Request, status_code: int, duration: float) -> None:
        endpoint = self._endpoint(request)
        metrics.http_requests_total.labels(method=request.method, endpoint=endpoint, status=str(status_code)).inc()
        metrics.http_request_duration_seconds.labels(method=request.method, endpoint=endpoint).observe(duration)

    def _log_response(self, request: Request, status_code: int, request_id: str, duration: float, quiet: bool) -> None:
        if status_code >= 500:
            level = logging.ERROR
        elif status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.DEBUG if quiet else logging.INFO

        duration_ms = duration * 1000
        logger.log(
            level,
            f"← {request.method} {request.url.path} {status_code} ({duration_ms:.2f}ms)",
            extra={
                "request_id": request_id,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2)
            }
        )
