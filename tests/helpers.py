"""Process fakes and disk usage stubs shared by the tests."""

import asyncio
from datetime import datetime
from types import SimpleNamespace

from cctv_recorder.services.supervisor import ManagedProcess, ProcessKind


GB = 1024 ** 3
FIXED_NOW = datetime(2024, 5, 1, 10, 30, 0)


def make_usage(free_gb):
    """disk_usage replacement reporting ``free_gb`` free."""
    return lambda path: SimpleNamespace(total=500 * GB, used=0, free=int(free_gb * GB))


class FakeStdin:
    def __init__(self, fail=False):
        self.written = []
        self.closed = False
        self.fail = fail

    def write(self, data):
        if self.fail:
            raise BrokenPipeError("pipe closed")
        self.written.append(data)

    async def drain(self):
        pass

    def is_closing(self):
        return self.closed


class FakeProcess:
    _next_pid = 4000

    def __init__(self, stdin=None):
        FakeProcess._next_pid += 1
        self.pid = FakeProcess._next_pid
        self.returncode = None
        self.stdin = stdin if stdin is not None else FakeStdin()


class FakeSupervisor:
    """Stands in for ProcessSupervisor; ``exit()`` simulates the child ending."""

    def __init__(self, name="fake", kind=ProcessKind.RECORDER, fail_with=None, stdin_fails=False, spawn_delay=0.0):
        self.name = name
        self.kind = kind
        self.fail_with = fail_with
        self.stdin_fails = stdin_fails
        self.spawn_delay = spawn_delay
        self.current = None
        self.callbacks = []
        self.start_calls = 0
        self.stop_calls = 0

    def add_exit_callback(self, callback):
        self.callbacks.append(callback)

    def is_running(self):
        return self.current is not None and self.current.running

    async def start(self):
        self.start_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        if self.is_running():
            return self.current
        if self.spawn_delay:
            await asyncio.sleep(self.spawn_delay)
        process = FakeProcess(FakeStdin(fail=self.stdin_fails))
        self.current = ManagedProcess(name=self.name, kind=self.kind, process=process)
        return self.current

    def exit(self, code=0):
        managed = self.current
        managed.exit_code = code
        managed.process.returncode = code
        managed.public_url = None
        managed.exited.set()
        self.current = None
        for callback in list(self.callbacks):
            callback(managed)

    async def stop(self):
        self.stop_calls += 1
        if not self.is_running():
            return {"ok": True, "msg": f"{self.name} not running"}
        pid = self.current.pid
        self.exit(-15)
        return {"ok": True, "msg": f"{self.name} killed", "pid": pid}

    def snapshot(self):
        if self.current is None:
            data = {"running": False, "pid": None}
            if self.kind is ProcessKind.TUNNEL:
                data["url"] = None
            return data
        return self.current.snapshot()


class SupervisorFactory:
    """Records one FakeSupervisor per started session."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.created = []
        self.sessions = []

    def __call__(self, session):
        supervisor = FakeSupervisor(name=f"ffmpeg cam {session.cam_id}", **self.kwargs)
        self.created.append(supervisor)
        self.sessions.append(session)
        return supervisor

    @property
    def last(self):
        return self.created[-1]


