"""Network readiness helpers."""
from __future__ import annotations

import asyncio
import logging
import time

logger = logging.getLogger(__name__)


async def wait_for_port(host: str, port: int, timeout: float, interval: float = 0.25) -> bool:
    """Poll until ``host:port`` accepts TCP connections.

    Returns False if the port is still closed after ``timeout`` seconds.
    """
    deadline = time.monotonic() + timeout
    attempts = 0
    while True:
        attempts += 1
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), interval)
        except (OSError, asyncio.TimeoutError):
            if time.monotonic() >= deadline:
                logger.debug(f"{host}:{port} not reachable after {attempts} attempt(s)")
                return False
            await asyncio.sleep(interval)
            continue
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        logger.debug(f"{host}:{port} accepting connections (attempt {attempts})")
        return True
