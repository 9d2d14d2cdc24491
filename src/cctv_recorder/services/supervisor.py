"""Child process supervision shared by the recorder, relay and tunnel clients.

One ``ProcessSupervisor`` owns one process slot (e.g. "go2rtc" or the encoder
of camera 2). Each ``start()`` spawns a fresh OS process and wraps it in a
``ManagedProcess`` record that tracks liveness, a tail of the process output
and, for tunnel clients, the public URL printed by the client.

Process Lifecycle:
    start()  -> executable/config checks -> spawn -> output pumps + exit watcher
    exit     -> exit_code recorded, cached URL cleared, exit callbacks invoked
    stop()   -> tree termination via a platform Terminator, settle delay,
                returns without confirming death

Termination Strategies:
    ProcessGroupTerminator - POSIX, children run in their own session so the
                             whole group receives SIGTERM
    TaskkillTerminator     - Windows, ``taskkill /T /F`` on the PID

Logging Strategy:
    DEBUG - Child output lines, control writes
    INFO  - Spawns, exits, stops, discovered tunnel URLs
    WARN  - Child output mentioning errors, failed taskkill
    ERROR - Termination failures, exit callback failures
"""
from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
import signal
import subprocess
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Final, Iterable, Protocol, Sequence

from .. import metrics
from .exceptions import (
    ConfigNotFound,
    ControlChannelError,
    ExecutableNotFound,
    ProcessSpawnFailure,
)

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

TUNNEL_URL_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"https://[a-z0-9-]+\.trycloudflare\.com",
    re.IGNORECASE,
)
"""Public hostname announced by quick tunnels."""

STOP_SETTLE_SECONDS: Final[float] = 0.3
"""Pause after signalling a process tree before stop() returns."""

READ_CHUNK_SIZE: Final[int] = 4096
LOG_TAIL_LINES: Final[int] = 200
MAX_PARTIAL_LINE: Final[int] = 8192
URL_SCAN_CARRY: Final[int] = 128
"""Characters kept from the previous chunk so a URL split across reads still matches."""

CREATE_NO_WINDOW: Final[int] = getattr(subprocess, "CREATE_NO_WINDOW", 0)


class ProcessKind(str, Enum):
    RECORDER = "recorder"
    RELAY = "relay"
    TUNNEL = "tunnel"


def extract_tunnel_url(text: str) -> str | None:
    match = TUNNEL_URL_PATTERN.search(text)
    return match.group(0) if match else None


# ============================================================================
# Managed Process Record
# ============================================================================

@dataclass
class ManagedProcess:
    """State of one spawned process.

    ``process`` is the asyncio subprocess handle; the record does not own the
    OS process, it only observes it.
    """

    name: str
    kind: ProcessKind
    process: Any
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    killed: bool = False
    exit_code: int | None = None
    public_url: str | None = None
    log: deque[str] = field(default_factory=lambda: deque(maxlen=LOG_TAIL_LINES))
    exited: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    _partial: dict[str, str] = field(default_factory=dict, repr=False)
    _scan_tail: dict[str, str] = field(default_factory=dict, repr=False)

    @property
    def pid(self) -> int | None:
        return getattr(self.process, "pid", None)

    @property
    def running(self) -> bool:
        return (
            not self.killed
            and self.exit_code is None
            and getattr(self.process, "returncode", None) is None
        )

    def record_output(self, text: str, channel: str = "stdout") -> list[str]:
        """Feed a chunk of output; returns the lines it completed.

        Tunnel processes also have the chunk scanned for their public URL.
        The first URL found is kept until the process exits.
        """
        if self.kind is ProcessKind.TUNNEL and self.public_url is None:
            window = self._scan_tail.get(channel, "") + text
            url = extract_tunnel_url(window)
            if url:
                self.public_url = url
                logger.info(f"[{self.name}] public URL: {url}")
            self._scan_tail[channel] = window[-URL_SCAN_CARRY:]

        buffered = self._partial.get(channel, "") + text.replace("\r", "\n")
        *complete, rest = buffered.split("\n")
        if len(rest) > MAX_PARTIAL_LINE:
            complete.append(rest)
            rest = ""
        self._partial[channel] = rest
        return self._append_lines(complete)

    def flush_output(self, channel: str = "stdout") -> list[str]:
        rest = self._partial.pop(channel, "")
        return self._append_lines([rest])

    def _append_lines(self, lines: Iterable[str]) -> list[str]:
        kept = [line.strip() for line in lines if line.strip()]
        self.log.extend(kept)
        return kept

    async def send_control(self, data: bytes) -> None:
        """Write ``data`` to the process's stdin."""
        stdin = getattr(self.process, "stdin", None)
        if stdin is None:
            raise ControlChannelError(f"{self.name} has no control channel")
        if stdin.is_closing():
            raise ControlChannelError(f"{self.name} control channel is closed")
        try:
            stdin.write(data)
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError, OSError) as e:
            raise ControlChannelError(f"{self.name} control write failed: {e}") from e
        logger.debug(f"[{self.name}] wrote {data!r} to stdin")

    async def wait(self, timeout: float | None = None) -> bool:
        """Wait for the exit notification; False on timeout."""
        try:
            await asyncio.wait_for(self.exited.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def snapshot(self) -> dict[str, Any]:
        data: dict[str, Any] = {"running": self.running, "pid": self.pid}
        if self.kind is ProcessKind.TUNNEL:
            data["url"] = self.public_url
        return data


# ============================================================================
# Termination Strategies
# ============================================================================

class Terminator(Protocol):
    async def terminate(self, pid: int) -> None: ...


class ProcessGroupTerminator:
    """SIGTERM to the child's process group, or to the child alone if that fails."""

    def __init__(self, sig: int = signal.SIGTERM) -> None:
        self.sig = sig

    async def terminate(self, pid: int) -> None:
        try:
            os.killpg(pid, self.sig)
            return
        except OSError as e:
            logger.debug(f"killpg({pid}) failed: {e}; signalling process only")
        try:
            os.kill(pid, self.sig)
        except ProcessLookupError:
            logger.debug(f"PID {pid} already gone")


class TaskkillTerminator:
    """Kills the process and its descendants with the Windows task killer."""

    async def terminate(self, pid: int) -> None:
        killer = await asyncio.create_subprocess_exec(
            "taskkill", "/PID", str(pid), "/T", "/F",
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            creationflags=CREATE_NO_WINDOW,
        )
        code = await killer.wait()
        if code != 0:
            logger.warning(f"taskkill returned {code} for PID {pid}")


def default_terminator() -> Terminator:
    """Pick the strategy from platform capability."""
    if hasattr(os, "killpg"):
        return ProcessGroupTerminator()
    return TaskkillTerminator()


# ============================================================================
# Supervisor
# ============================================================================

ExitCallback = Callable[[ManagedProcess], None]


class ProcessSupervisor:
    """Start, observe and terminate one kind of child process.

    Args:
        name: Label used in logs and results (e.g. "tunnel-api")
        executable: Path or command name resolved through PATH
        args: Command line arguments
        kind: Process kind; tunnels get URL scanning
        cwd: Working directory for the child
        required_files: Files that must exist before spawning (configs)
        control_stdin: Open stdin as a pipe for control writes
        terminator: Termination strategy (platform default if omitted)
        settle_seconds: Delay after termination before stop() returns
    """

    def __init__(
        self,
        name: str,
        executable: str | Path,
        args: Sequence[str] = (),
        *,
        kind: ProcessKind = ProcessKind.RELAY,
        cwd: str | Path | None = None,
        required_files: Sequence[str | Path] = (),
        control_stdin: bool = False,
        terminator: Terminator | None = None,
        settle_seconds: float = STOP_SETTLE_SECONDS,
    ) -> None:
        self.name = name
        self.executable = str(executable)
        self.args = [str(a) for a in args]
        self.kind = kind
        self.cwd = str(cwd) if cwd is not None else None
        self.required_files = [Path(f) for f in required_files]
        self.control_stdin = control_stdin
        self.terminator = terminator or default_terminator()
        self.settle_seconds = settle_seconds
        self.current: ManagedProcess | None = None
        self._exit_callbacks: list[ExitCallback] = []
        self._tasks: set[asyncio.Task] = set()
        self._lock = asyncio.Lock()

    def add_exit_callback(self, callback: ExitCallback) -> None:
        self._exit_callbacks.append(callback)

    def is_running(self) -> bool:
        return self.current is not None and self.current.running

    def snapshot(self) -> dict[str, Any]:
        if self.current is None:
            data: dict[str, Any] = {"running": False, "pid": None}
            if self.kind is ProcessKind.TUNNEL:
                data["url"] = None
            return data
        return self.current.snapshot()

    # ------------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------------

    def resolve_executable(self) -> str:
        found = shutil.which(self.executable)
        if found is None:
            raise ExecutableNotFound(f"{self.name} executable not found at {self.executable}")
        return found

    def check_required_files(self) -> None:
        for path in self.required_files:
            if not path.is_file():
                raise ConfigNotFound(f"{path.name} not found at {path}")

    async def start(self) -> ManagedProcess:
        """Spawn the process, or return the running one.

        Serialized with stop(): concurrent callers share one process.

        Raises:
            ExecutableNotFound: Executable missing (checked before spawning)
            ConfigNotFound: A required file is missing
            ProcessSpawnFailure: The OS refused to start the process
        """
        async with self._lock:
            return await self._start_locked()

    async def _start_locked(self) -> ManagedProcess:
        if self.current is not None and self.current.running:
            logger.debug(f"[{self.name}] already running (PID {self.current.pid})")
            return self.current

        try:
            executable = self.resolve_executable()
            self.check_required_files()
            process = await asyncio.create_subprocess_exec(
                executable,
                *self.args,
                cwd=self.cwd,
                stdin=subprocess.PIPE if self.control_stdin else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                **self._platform_spawn_options(),
            )
        except ProcessSpawnFailure:
            metrics.process_starts_total.labels(kind=self.kind.value, status="failure").inc()
            raise
        except OSError as e:
            metrics.process_starts_total.labels(kind=self.kind.value, status="failure").inc()
            raise ProcessSpawnFailure(f"{self.name} failed to start: {e}") from e

        managed = ManagedProcess(name=self.name, kind=self.kind, process=process)
        self.current = managed
        metrics.process_starts_total.labels(kind=self.kind.value, status="success").inc()
        metrics.processes_running.labels(kind=self.kind.value).inc()
        logger.info(f"[{self.name}] started (PID {process.pid})")

        task = asyncio.create_task(self._watch(managed), name=f"watch-{self.name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return managed

    @staticmethod
    def _platform_spawn_options() -> dict[str, Any]:
        if os.name == "nt":
            return {"creationflags": CREATE_NO_WINDOW}
        # own process group, so the whole tree can be signalled
        return {"start_new_session": True}

    # ------------------------------------------------------------------------
    # Output and exit
    # ------------------------------------------------------------------------

    async def _watch(self, managed: ManagedProcess) -> None:
        process = managed.process
        try:
            await asyncio.gather(
                self._pump(managed, process.stdout, "stdout"),
                self._pump(managed, process.stderr, "stderr"),
            )
            code = await process.wait()
        except asyncio.CancelledError:
            logger.debug(f"[{self.name}] watcher cancelled")
            raise
        self._on_exit(managed, code)

    async def _pump(self, managed: ManagedProcess, stream: asyncio.StreamReader | None, channel: str) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            for line in managed.record_output(chunk.decode("utf-8", errors="replace"), channel):
                self._log_line(channel, line)
        for line in managed.flush_output(channel):
            self._log_line(channel, line)

    def _log_line(self, channel: str, line: str) -> None:
        lowered = line.lower()
        if "error" in lowered or "fatal" in lowered:
            logger.warning(f"[{self.name} {channel}] {line}")
        else:
            logger.debug(f"[{self.name} {channel}] {line}")

    def _on_exit(self, managed: ManagedProcess, code: int) -> None:
        managed.exit_code = code
        managed.public_url = None
        managed.exited.set()
        if self.current is managed:
            self.current = None

        metrics.process_exits_total.labels(kind=self.kind.value).inc()
        metrics.processes_running.labels(kind=self.kind.value).dec()
        logger.info(f"[{self.name}] exited with code {code}")

        for callback in list(self._exit_callbacks):
            try:
                callback(managed)
            except Exception as e:
                logger.error(f"[{self.name}] exit callback failed: {e}", exc_info=True)

    # ------------------------------------------------------------------------
    # Control and stop
    # ------------------------------------------------------------------------

    async def send_control(self, data: bytes) -> None:
        if self.current is None:
            raise ControlChannelError(f"{self.name} is not running")
        await self.current.send_control(data)

    async def stop(self) -> dict[str, Any]:
        """Terminate the process tree; best effort, death is not confirmed."""
        async with self._lock:
            return await self._stop_locked()

    async def _stop_locked(self) -> dict[str, Any]:
        managed = self.current
        if managed is None or not managed.running:
            return {"ok": True, "msg": f"{self.name} not running"}

        pid = managed.pid
        managed.killed = True
        try:
            await self.terminator.terminate(pid)
        except Exception as e:
            managed.killed = False
            logger.error(f"[{self.name}] kill failed (PID {pid}): {e}", exc_info=True)
            return {"ok": False, "msg": f"{self.name} kill failed", "error": str(e), "pid": pid}

        await asyncio.sleep(self.settle_seconds)
        managed.public_url = None
        if self.current is managed:
            self.current = None
        logger.info(f"[{self.name}] killed (PID {pid})")
        return {"ok": True, "msg": f"{self.name} killed", "pid": pid}
