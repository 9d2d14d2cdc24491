"""Start/stop/status of the relay (go2rtc) and the two quick tunnels.

Startup order:
    go2rtc -> wait for its HTTP port -> tunnel-api -> tunnel-cam

The tunnels expose the recorder API and the relay UI. Failures are returned as
``{"ok": False, "msg": ...}`` step results, never raised, so the caller always
gets a full report of what happened.

Logging Strategy:
    INFO  - Step results
    WARN  - Relay port not ready in time, failed steps
"""
from __future__ import annotations

import logging
from typing import Any

from ..config_io import Settings
from ..utils.net import wait_for_port
from .exceptions import ProcessSpawnFailure
from .supervisor import ProcessKind, ProcessSupervisor

logger = logging.getLogger(__name__)

RELAY_HOST = "127.0.0.1"


class SystemControl:
    """Facade over the relay and tunnel supervisors.

    Supervisors are injectable for tests; by default they are built from
    ``settings``.
    """

    def __init__(
        self,
        settings: Settings,
        relay: ProcessSupervisor | None = None,
        tunnel_api: ProcessSupervisor | None = None,
        tunnel_cam: ProcessSupervisor | None = None,
    ) -> None:
        self.settings = settings
        self.relay = relay or ProcessSupervisor(
            "go2rtc",
            settings.go2rtc_path,
            ["-config", str(settings.go2rtc_config)],
            kind=ProcessKind.RELAY,
            cwd=settings.home,
            required_files=[settings.go2rtc_config],
        )
        self.tunnel_api = tunnel_api or self._tunnel("tunnel-api", settings.api_target)
        self.tunnel_cam = tunnel_cam or self._tunnel("tunnel-cam", settings.relay_target)

    def _tunnel(self, name: str, target: str) -> ProcessSupervisor:
        return ProcessSupervisor(
            name,
            self.settings.cloudflared_path,
            ["tunnel", "--url", target],
            kind=ProcessKind.TUNNEL,
            cwd=self.settings.home,
        )

    # ========================================================================
    # Start
    # ========================================================================

    async def _start_step(self, supervisor: ProcessSupervisor, **info: Any) -> dict[str, Any]:
        if supervisor.is_running():
            return {"ok": True, "msg": f"{supervisor.name} already running", "pid": supervisor.current.pid, **info}
        try:
            managed = await supervisor.start()
        except ProcessSpawnFailure as e:
            logger.warning(f"{supervisor.name} start failed: {e}")
            return {"ok": False, "msg": str(e)}
        return {"ok": True, "msg": f"{supervisor.name} started", "pid": managed.pid, **info}

    async def start(self, start_tunnels: bool = True) -> dict[str, Any]:
        port = self.settings.go2rtc_port
        go2rtc = await self._start_step(self.relay, port=port)
        if go2rtc["ok"]:
            go2rtc["ready"] = await wait_for_port(RELAY_HOST, port, self.settings.relay_ready_timeout)
            if not go2rtc["ready"]:
                logger.warning(f"go2rtc port {port} not ready after {self.settings.relay_ready_timeout}s, continuing")

        if start_tunnels:
            tunnel_api = await self._start_step(self.tunnel_api, target=self.settings.api_target)
            tunnel_cam = await self._start_step(self.tunnel_cam, target=self.settings.relay_target)
        else:
            tunnel_api = {"ok": True, "msg": "skip tunnel-api"}
            tunnel_cam = {"ok": True, "msg": "skip tunnel-cam"}

        ok = go2rtc["ok"] and tunnel_api["ok"] and tunnel_cam["ok"]
        logger.info(f"System start: go2rtc={go2rtc['msg']}, tunnel-api={tunnel_api['msg']}, tunnel-cam={tunnel_cam['msg']}")
        return {
            "ok": ok,
            "go2rtc": go2rtc,
            "tunnelApi": tunnel_api,
            "tunnelCam": tunnel_cam,
            "note": "Tunnel URLs appear in /api/system/status once cloudflared reports them",
        }

    # ========================================================================
    # Stop / status
    # ========================================================================

    async def stop(self, stop_tunnels: bool = True, stop_go2rtc: bool = True) -> dict[str, Any]:
        results: dict[str, Any] = {}
        for key, supervisor in (("tunnelApi", self.tunnel_api), ("tunnelCam", self.tunnel_cam)):
            results[key] = await supervisor.stop() if stop_tunnels else {"ok": True, "msg": f"skip {supervisor.name}"}
        results["go2rtc"] = await self.relay.stop() if stop_go2rtc else {"ok": True, "msg": "skip go2rtc"}

        ok = all(r["ok"] for r in results.values())
        if not ok:
            logger.warning(f"System stop incomplete: {results}")
        else:
            logger.info("System stop: " + ", ".join(f"{k}={r['msg']}" for k, r in results.items()))
        return {"ok": ok, "results": results}

    def status(self) -> dict[str, Any]:
        return {
            "ok": True,
            "api": {"port": self.settings.app_port},
            "go2rtc": {**self.relay.snapshot(), "port": self.settings.go2rtc_port},
            "tunnelApi": {**self.tunnel_api.snapshot(), "target": self.settings.api_target},
            "tunnelCam": {**self.tunnel_cam.snapshot(), "target": self.settings.relay_target},
        }
