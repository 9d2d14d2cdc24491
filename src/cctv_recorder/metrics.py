"""Prometheus metrics.

Exposed at GET /metrics. Services update these directly; the HTTP metrics
are recorded by ``middleware.request_id.RequestIDMiddleware``.
"""
from __future__ import annotations

import logging

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

from . import __version__

logger = logging.getLogger(__name__)

app_info = Info("cctv_recorder_app", "Application information")
app_info.info({"version": __version__, "name": "cctv-recorder"})

# ============================================================================
# HTTP
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ============================================================================
# Recording sessions
# ============================================================================

recordings_started_total = Counter(
    "recordings_started_total",
    "Recording start attempts",
    ["status"],  # started, busy, no_space, spawn_failed, invalid
)
recordings_stopped_total = Counter("recordings_stopped_total", "Graceful stop requests sent")
recordings_active = Gauge("recordings_active", "Cameras currently recording")

disk_free_gb = Gauge("disk_free_gb", "Free space on the recording volume at last admission check")

# ============================================================================
# Supervised processes
# ============================================================================

process_starts_total = Counter(
    "supervised_process_starts_total",
    "Supervised process start attempts",
    ["kind", "status"],  # success, failure
)
process_exits_total = Counter(
    "supervised_process_exits_total",
    "Supervised process exits",
    ["kind"],
)
processes_running = Gauge(
    "supervised_processes_running",
    "Supervised processes currently running",
    ["kind"],
)

# ============================================================================
# Media
# ============================================================================

media_bytes_served_total = Counter("media_bytes_served_total", "Recording bytes sent to clients")
media_requests_total = Counter(
    "media_requests_total",
    "Recording fetches",
    ["status"],  # 200, 206, 404, 416
)
retention_deleted_total = Counter("retention_deleted_total", "Recordings removed by retention sweeps")


def get_metrics() -> tuple[bytes, int, dict[str, str]]:
    """Render the registry as (body, status, headers)."""
    try:
        return generate_latest(REGISTRY), 200, {"Content-Type": CONTENT_TYPE_LATEST}
    except Exception as e:
        logger.error(f"Metrics generation failed: {e}", exc_info=True)
        return b"# Error\n", 500, {"Content-Type": "text/plain"}
