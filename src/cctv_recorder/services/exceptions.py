"""Domain exceptions raised by the recorder services.

Services raise these; the API layer translates them into HTTP responses
(see ``cctv_recorder.api.errors``). System-control operations catch
``ProcessSpawnFailure`` and report it as a ``{"ok": False, "msg": ...}``
result instead.
"""
from __future__ import annotations


class RecorderError(Exception):
    """Base class for all recorder domain errors."""


class MissingParameter(RecorderError, ValueError):
    """A required request field is absent or blank."""

    def __init__(self, field: str, message: str | None = None) -> None:
        self.field = field
        super().__init__(message or f"{field} is required")


class CameraBusy(RecorderError):
    """A recording session already exists for the camera."""

    def __init__(self, cam_id: str, held_by: str) -> None:
        self.cam_id = cam_id
        self.held_by = held_by
        super().__init__(f"Camera {cam_id} is already in use by: {held_by}")


class InsufficientDiskSpace(RecorderError):
    """Free space on the recording volume is below the admission threshold."""

    def __init__(self, free_gb: float, threshold_gb: float) -> None:
        self.free_gb = free_gb
        self.threshold_gb = threshold_gb
        super().__init__(
            f"Insufficient disk space: {free_gb:.2f} GB free "
            f"(at least {threshold_gb:g} GB required)"
        )


class DiskCheckFailed(RecorderError):
    """Free space could not be determined."""


class MediaNotFound(RecorderError):
    def __init__(self, filename: str) -> None:
        self.filename = filename
        super().__init__(f"File not found: {filename}")


class RangeNotSatisfiable(RecorderError):
    def __init__(self, range_header: str, file_size: int) -> None:
        self.range_header = range_header
        self.file_size = file_size
        super().__init__(f"Range not satisfiable: {range_header!r} (size {file_size})")


class ProcessSpawnFailure(RecorderError):
    """A supervised process could not be started."""


class ExecutableNotFound(ProcessSpawnFailure):
    pass


class ConfigNotFound(ProcessSpawnFailure):
    pass


class ControlChannelError(RecorderError):
    """Writing to a supervised process's stdin failed."""
