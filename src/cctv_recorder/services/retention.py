"""Age-based deletion of old recordings.

A background task sweeps the recording directory at startup and then every
``interval_seconds``. Files of active sessions are never touched.
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Callable, Iterable

from .. import metrics
from .media_catalog import file_created_at

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


class RetentionSweeper:
    def __init__(
        self,
        record_dir: Path,
        *,
        extension: str = ".mp4",
        max_age_days: float = 14.0,
        interval_seconds: float = 3600.0,
        protected: Callable[[], Iterable[Path]] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.record_dir = Path(record_dir)
        self.extension = extension.lower()
        self.max_age_seconds = max_age_days * SECONDS_PER_DAY
        self.interval_seconds = interval_seconds
        self._protected = protected or (lambda: ())
        self._clock = clock
        self._task: asyncio.Task | None = None

    def sweep(self) -> list[str]:
        """Delete expired recordings; returns the deleted names."""
        logger.info(f"Retention: checking files older than {self.max_age_seconds:.0f} seconds")
        try:
            entries = list(os.scandir(self.record_dir))
        except OSError as e:
            logger.error(f"Retention: cannot read {self.record_dir}: {e}")
            return []

        now = self._clock()
        protected = {Path(p).name for p in self._protected()}
        deleted: list[str] = []
        for entry in entries:
            if not entry.name.lower().endswith(self.extension) or entry.name in protected:
                continue
            try:
                age = now - file_created_at(entry.stat())
                if age <= self.max_age_seconds:
                    continue
                os.unlink(entry.path)
            except OSError as e:
                logger.error(f"Retention: failed to delete {entry.name}: {e}")
                continue
            deleted.append(entry.name)
            metrics.retention_deleted_total.inc()
            logger.info(f"Retention: deleted {entry.name}")
        return deleted

    async def run(self) -> None:
        while True:
            try:
                await asyncio.to_thread(self.sweep)
            except Exception as e:
                logger.error(f"Retention sweep failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self.run(), name="retention-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
