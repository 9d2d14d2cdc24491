"""Free-space admission check for new recordings."""
from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Final

from .. import metrics
from .exceptions import DiskCheckFailed, InsufficientDiskSpace

logger = logging.getLogger(__name__)

BYTES_PER_GB: Final[int] = 1024 ** 3


@dataclass(frozen=True, slots=True)
class DiskSpaceSnapshot:
    path: Path
    free_bytes: int
    threshold_gb: float

    @property
    def free_gb(self) -> float:
        return self.free_bytes / BYTES_PER_GB

    @property
    def ok(self) -> bool:
        return self.free_gb >= self.threshold_gb


class DiskGuard:
    """Rejects new sessions when the recording volume is nearly full.

    Checked once per start request; an in-progress recording is not
    monitored.
    """

    def __init__(
        self,
        threshold_gb: float = 20.0,
        usage: Callable[[Path], tuple[int, int, int]] = shutil.disk_usage,
    ) -> None:
        self.threshold_gb = max(0.0, threshold_gb)
        self._usage = usage
        self.last_snapshot: DiskSpaceSnapshot | None = None

    def snapshot(self, path: Path) -> DiskSpaceSnapshot:
        # disk_usage on the directory itself reports the filesystem it lives on,
        # including mounted volumes under /
        try:
            free = self._usage(Path(path)).free
        except OSError as e:
            logger.error(f"Disk usage query failed for {path}: {e}")
            raise DiskCheckFailed(f"Unable to check disk space: {e}") from e
        snap = DiskSpaceSnapshot(path=Path(path), free_bytes=free, threshold_gb=self.threshold_gb)
        self.last_snapshot = snap
        metrics.disk_free_gb.set(snap.free_gb)
        return snap

    async def check_capacity(self, path: Path) -> float:
        """Return free GB, or raise InsufficientDiskSpace below the threshold."""
        snap = await asyncio.to_thread(self.snapshot, path)
        if not snap.ok:
            logger.warning(
                "Disk guard blocking recording: free=%.2f GB threshold=%.2f GB",
                snap.free_gb,
                snap.threshold_gb,
            )
            raise InsufficientDiskSpace(snap.free_gb, snap.threshold_gb)
        logger.info(f"Disk free space: {snap.free_gb:.2f} GB")
        return snap.free_gb
