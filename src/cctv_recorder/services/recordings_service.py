"""Per-camera recording sessions backed by supervised ffmpeg processes.

Session Lifecycle:
    start  -> exclusivity check -> disk admission -> name output file
           -> register session -> spawn encoder
    stop   -> write "q" to encoder stdin -> session removed immediately;
              the encoder keeps finalizing the MP4 in the background
    exit   -> encoder exit notification removes any session still pointing
              at that process (crash, source lost, finished stop)

Concurrency:
    Start and stop for one camera run under that camera's asyncio.Lock, so
    two concurrent starts cannot both pass the exclusivity check. Different
    cameras never contend.

Slot Reuse:
    A stopped camera can be started again immediately. The previous encoder
    is tracked as "finalizing" until it exits so shutdown can wait for it and
    retention never deletes its file. New output never overwrites an existing
    file; a numeric suffix is added on name collisions.

Logging Strategy:
    INFO  - Session start/stop/exit
    WARN  - Admission rejections, encoders killed on shutdown
    ERROR - Control write failures
"""
from __future__ import annotations

import asyncio
import logging
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Final

from .. import metrics
from ..config.ffmpeg_defaults import GRACEFUL_STOP_COMMAND, build_record_args
from ..config_io import Settings
from ..utils.strings import normalize_id, sanitize_filename_part
from .disk_guard import DiskGuard
from .exceptions import (
    CameraBusy,
    ControlChannelError,
    DiskCheckFailed,
    InsufficientDiskSpace,
    MissingParameter,
    ProcessSpawnFailure,
)
from .supervisor import ManagedProcess, ProcessKind, ProcessSupervisor

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

TIMESTAMP_FORMAT: Final[str] = "%Y-%m-%d_%H-%M-%S"
DEFAULT_USER: Final[str] = "Unknown"
DEFAULT_BILL: Final[str] = "NoBill"
SHUTDOWN_TIMEOUT: Final[float] = 10.0
"""Seconds to let encoders finalize on shutdown before killing them."""


class Direction(str, Enum):
    IN = "IN"
    OUT = "OUT"

    @classmethod
    def from_record_type(cls, record_type: Any) -> Direction:
        if record_type is not None and str(record_type).strip().lower() == "out":
            return cls.OUT
        return cls.IN


def build_filename(
    cam_id: str,
    user: str,
    bill_id: str,
    direction: Direction,
    when: datetime,
    extension: str = ".mp4",
) -> str:
    """``CCTV_Cam<cam>_<user>_<bill>_<IN|OUT>_<YYYY-mm-dd_HH-MM-SS><ext>``.

    ``user`` and ``bill_id`` are expected to be sanitized already.
    """
    cam = sanitize_filename_part(cam_id, "0")
    return f"CCTV_Cam{cam}_{user}_{bill_id}_{direction.value}_{when.strftime(TIMESTAMP_FORMAT)}{extension}"


# ============================================================================
# Session Record
# ============================================================================

@dataclass
class RecordingSession:
    cam_id: str
    user: str
    bill_id: str
    direction: Direction
    stream_id: str | None
    source_url: str
    started_at: datetime
    filename: str
    output_path: Path
    supervisor: ProcessSupervisor | None = None
    process: ManagedProcess | None = None

    async def send_stop(self) -> None:
        if self.process is None:
            raise ControlChannelError(f"camera {self.cam_id} has no encoder process")
        await self.process.send_control(GRACEFUL_STOP_COMMAND)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user": self.user,
            "billId": self.bill_id,
            "direction": self.direction.value,
            "startTime": self.started_at.isoformat(),
            "streamId": self.stream_id,
            "filename": self.filename,
            "outputPath": str(self.output_path),
            "pid": self.process.pid if self.process else None,
        }


SupervisorFactory = Callable[[RecordingSession], ProcessSupervisor]


# ============================================================================
# Registry
# ============================================================================

class RecordingsService:
    """Owns the camera -> session mapping and the encoder processes.

    Attributes:
        sessions: {cam_id: RecordingSession} for cameras currently recording
    """

    def __init__(
        self,
        settings: Settings,
        disk_guard: DiskGuard | None = None,
        supervisor_factory: SupervisorFactory | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.settings = settings
        self.record_dir = Path(settings.record_dir)
        self.record_dir.mkdir(parents=True, exist_ok=True)
        self.disk_guard = disk_guard or DiskGuard(settings.min_free_gb)
        self._supervisor_factory = supervisor_factory or self._encoder_supervisor
        self._clock = clock
        self.sessions: dict[str, RecordingSession] = {}
        self._finalizing: list[RecordingSession] = []
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()
        logger.info(f"RecordingsService initialized: dir={self.record_dir}, min_free={self.disk_guard.threshold_gb} GB")

    def _encoder_supervisor(self, session: RecordingSession) -> ProcessSupervisor:
        return ProcessSupervisor(
            f"ffmpeg cam {session.cam_id}",
            self.settings.ffmpeg_path,
            build_record_args(session.source_url, session.output_path),
            kind=ProcessKind.RECORDER,
            cwd=self.record_dir,
            control_stdin=True,
        )

    @asynccontextmanager
    async def _camera_lock(self, cam: str) -> AsyncIterator[None]:
        """Hold ``cam``'s lock; it is dropped once no caller holds or awaits it."""
        lock = self._locks.get(cam)
        if lock is None:
            lock = self._locks[cam] = asyncio.Lock()
        self._lock_users[cam] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[cam] -= 1
            if self._lock_users[cam] == 0:
                del self._lock_users[cam]
                del self._locks[cam]

    # ========================================================================
    # Start
    # ========================================================================

    async def start(
        self,
        cam_id: Any,
        user: str | None = None,
        bill_id: str | None = None,
        record_type: str | None = None,
        stream_id: Any = None,
    ) -> dict[str, Any]:
        """Admit and start a recording for ``cam_id``.

        Raises:
            MissingParameter: cam_id absent
            CameraBusy: camera already recording
            InsufficientDiskSpace / DiskCheckFailed: admission refused
            ProcessSpawnFailure: encoder could not be started
        """
        cam = normalize_id(cam_id)
        if cam is None:
            metrics.recordings_started_total.labels(status="invalid").inc()
            raise MissingParameter("camId")

        async with self._camera_lock(cam):
            existing = self.sessions.get(cam)
            if existing is not None:
                metrics.recordings_started_total.labels(status="busy").inc()
                raise CameraBusy(cam, existing.user)

            try:
                await self.disk_guard.check_capacity(self.record_dir)
            except (InsufficientDiskSpace, DiskCheckFailed):
                metrics.recordings_started_total.labels(status="no_space").inc()
                raise

            session = self._new_session(cam, user, bill_id, record_type, normalize_id(stream_id))
            self.sessions[cam] = session
            supervisor = self._supervisor_factory(session)
            session.supervisor = supervisor
            supervisor.add_exit_callback(lambda managed, s=session: self._on_encoder_exit(s, managed))

            logger.info(f"[REC] Starting cam {cam}: {session.filename} from {session.source_url}")
            try:
                session.process = await supervisor.start()
            except ProcessSpawnFailure as e:
                self._remove(session)
                metrics.recordings_started_total.labels(status="spawn_failed").inc()
                logger.error(f"[REC] Encoder for cam {cam} failed to start: {e}")
                raise

        metrics.recordings_started_total.labels(status="started").inc()
        metrics.recordings_active.set(len(self.sessions))
        return {"status": "started", "camId": cam, "filename": session.filename}

    def _new_session(
        self,
        cam: str,
        user: str | None,
        bill_id: str | None,
        record_type: str | None,
        stream_id: str | None,
    ) -> RecordingSession:
        now = self._clock()
        safe_user = sanitize_filename_part(user, DEFAULT_USER)
        safe_bill = sanitize_filename_part(bill_id, DEFAULT_BILL)
        direction = Direction.from_record_type(record_type)
        filename = build_filename(cam, safe_user, safe_bill, direction, now, self.settings.record_extension)
        output_path = self._unique_output_path(filename)
        return RecordingSession(
            cam_id=cam,
            user=safe_user,
            bill_id=safe_bill,
            direction=direction,
            stream_id=stream_id,
            source_url=self.settings.resolve_source(stream_id),
            started_at=now,
            filename=output_path.name,
            output_path=output_path,
        )

    def _unique_output_path(self, filename: str) -> Path:
        path = self.record_dir / filename
        stem, suffix = path.stem, path.suffix
        n = 1
        while path.exists():
            path = self.record_dir / f"{stem}_{n}{suffix}"
            n += 1
        return path

    # ========================================================================
    # Stop
    # ========================================================================

    async def stop(self, cam_id: Any) -> dict[str, Any]:
        """Ask the camera's encoder to finish; idempotent.

        Raises:
            MissingParameter: cam_id absent
            ControlChannelError: stop command could not be written (session kept)
        """
        cam = normalize_id(cam_id)
        if cam is None:
            raise MissingParameter("camId", "camId is required (or use stopAll=true)")

        async with self._camera_lock(cam):
            session = self.sessions.get(cam)
            if session is None:
                return {"status": "not recording", "camId": cam}

            logger.info(f"[REC] Stopping cam {cam} (clean)...")
            try:
                await session.send_stop()
            except ControlChannelError as e:
                logger.error(f"[REC] Stop cam {cam} failed: {e}")
                raise

            self._remove(session)
            self._finalizing.append(session)

        metrics.recordings_stopped_total.inc()
        return {"status": "stopping", "camId": cam}

    async def stop_all(self) -> dict[str, Any]:
        """Send the stop command to every encoder without waiting for exits.

        Each camera is stopped under its lock, so a start still spawning its
        encoder finishes first. Only cameras that received ``q`` are reported.
        """
        cams = list(self.sessions)
        if not cams:
            return {"status": "not recording", "stopped": []}

        stopped: list[str] = []
        for cam in cams:
            async with self._camera_lock(cam):
                session = self.sessions.get(cam)
                if session is None:
                    continue
                logger.info(f"[REC] Stopping cam {cam}...")
                try:
                    await session.send_stop()
                except ControlChannelError as e:
                    logger.error(f"[REC] Stop cam {cam} failed: {e}")
                    continue
            stopped.append(cam)
            metrics.recordings_stopped_total.inc()

        return {"status": "stopping_all", "stopped": stopped}

    # ========================================================================
    # Exit notifications
    # ========================================================================

    def _on_encoder_exit(self, session: RecordingSession, managed: ManagedProcess) -> None:
        if self._remove(session):
            logger.info(f"[REC] Cam {session.cam_id} encoder exited with code {managed.exit_code}, session closed")
        else:
            logger.info(f"[REC] Cam {session.cam_id} finalized {session.filename} (code {managed.exit_code})")
        self._finalizing = [s for s in self._finalizing if s is not session]

    def _remove(self, session: RecordingSession) -> bool:
        """Drop ``session`` if it is still the camera's current one."""
        if self.sessions.get(session.cam_id) is not session:
            return False
        del self.sessions[session.cam_id]
        metrics.recordings_active.set(len(self.sessions))
        return True

    # ========================================================================
    # Queries
    # ========================================================================

    def is_recording(self, cam_id: Any) -> bool:
        return normalize_id(cam_id) in self.sessions

    def status(self) -> dict[str, Any]:
        return {
            "activeCameras": {cam: s.to_dict() for cam, s in self.sessions.items()},
            "recordingCamIds": list(self.sessions),
        }

    def active_output_paths(self) -> list[Path]:
        """Files still being written, including stopped-but-finalizing ones."""
        return [s.output_path for s in [*self.sessions.values(), *self._finalizing]]

    # ========================================================================
    # Shutdown
    # ========================================================================

    async def shutdown(self, timeout: float = SHUTDOWN_TIMEOUT) -> None:
        """Stop every encoder, give them ``timeout`` to finalize, then kill."""
        pending = [s for s in [*self.sessions.values(), *self._finalizing] if s.process is not None]
        if not pending:
            logger.info("No encoders to stop")
            return

        logger.info(f"Stopping {len(pending)} encoder(s)...")
        await self.stop_all()
        finished = await asyncio.gather(*(s.process.wait(timeout) for s in pending))
        for session, done in zip(pending, finished):
            if not done and session.supervisor is not None:
                logger.warning(f"[REC] Cam {session.cam_id} encoder did not exit in {timeout}s, killing")
                await session.supervisor.stop()
