"""Request bodies for the system control endpoints."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class SystemStartRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_tunnels: bool = Field(True, alias="startTunnels", description="Also start both cloudflared tunnels")


class SystemStopRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stop_tunnels: bool = Field(True, alias="stopTunnels")
    stop_go2rtc: bool = Field(True, alias="stopGo2rtc")
