"""Request bodies for the recording endpoints.

Clients send camelCase JSON (``camId``, ``billId``...). Camera and stream ids
may arrive as numbers; they are normalized to strings here. Required-field
checks (``camId``) happen in the service so a missing id yields the
recorder's own 400 message rather than a schema error.
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _id_to_str(value: Any) -> Any:
    # bools are ints in Python; keep them out of camera ids
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class StartRecordRequest(BaseModel):
    """Body of POST /api/start-record."""

    model_config = ConfigDict(populate_by_name=True)

    cam_id: Optional[str] = Field(None, alias="camId", description="Camera id", examples=["1"])
    stream_id: Optional[str] = Field(
        None,
        alias="streamId",
        description="Source id in the camera table; unknown ids use the default camera",
    )
    user: Optional[str] = Field(None, description="Operator label used in the filename")
    bill_id: Optional[str] = Field(None, alias="billId", description="Bill/order label used in the filename")
    record_type: Optional[str] = Field(
        None,
        alias="recordType",
        description='"out" records an OUT clip, anything else IN',
        examples=["in", "out"],
    )

    @field_validator("cam_id", "stream_id", "user", "bill_id", mode="before")
    @classmethod
    def coerce_numbers(cls, value: Any) -> Any:
        return _id_to_str(value)


class StopRecordRequest(BaseModel):
    """Body of POST /api/stop-record."""

    model_config = ConfigDict(populate_by_name=True)

    cam_id: Optional[str] = Field(None, alias="camId")
    stop_all: bool = Field(False, alias="stopAll", description="Stop every active recording")

    @field_validator("cam_id", mode="before")
    @classmethod
    def coerce_numbers(cls, value: Any) -> Any:
        return _id_to_str(value)
