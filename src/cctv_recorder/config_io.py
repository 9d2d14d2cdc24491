"""Runtime configuration from environment variables and an optional YAML file.

Resolution order (last wins):
    1. Built-in defaults (see ``Settings``)
    2. YAML file at CONFIG_PATH (default: <RECORDER_HOME>/config.yml)
    3. Environment variables

YAML layout:
    cameras:
      "1": rtsp://localhost:8554/tapo2
      "2": rtsp://localhost:8554/tapo3
    default_camera: "1"
    min_free_gb: 30

Thread Safety:
    Settings are loaded once under an RLock and cached; ``reload_settings()``
    rebuilds the cache.

Logging Strategy:
    DEBUG - Resolved values
    INFO  - Config source
    WARN  - Invalid values, unreadable YAML (defaults are kept)
"""
from __future__ import annotations

import io
import logging
import os
import sys
import threading
from pathlib import Path
from typing import Any, Final

import yaml
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

DEFAULT_CAMERA_SOURCES: Final[dict[str, str]] = {
    "1": "rtsp://localhost:8554/tapo2",
    "2": "rtsp://localhost:8554/tapo3",
    "3": "rtsp://localhost:8554/tapo1",
}
"""Static camera-id to relay source URL table."""

_EXE_SUFFIX: Final[str] = ".exe" if sys.platform == "win32" else ""

# Environment variable -> Settings field
_ENV_FIELDS: Final[dict[str, str]] = {
    "APP_HOST": "app_host",
    "APP_PORT": "app_port",
    "RECORD_DIR": "record_dir",
    "FFMPEG_PATH": "ffmpeg_path",
    "MIN_FREE_GB": "min_free_gb",
    "RETENTION_MAX_AGE_DAYS": "retention_max_age_days",
    "RETENTION_INTERVAL_SECONDS": "retention_interval_seconds",
    "GO2RTC_PATH": "go2rtc_path",
    "GO2RTC_CONFIG": "go2rtc_config",
    "GO2RTC_PORT": "go2rtc_port",
    "CLOUDFLARED_PATH": "cloudflared_path",
    "RELAY_READY_TIMEOUT": "relay_ready_timeout",
    "CORS_ORIGINS": "cors_origins",
}


# ============================================================================
# Settings Model
# ============================================================================

class Settings(BaseModel):
    """Resolved service configuration."""

    home: Path = Field(default_factory=Path.cwd, description="Base directory for binaries and data")
    app_host: str = "0.0.0.0"
    app_port: int = Field(default=5000, ge=1, le=65535)

    record_dir: Path | None = None
    record_extension: str = ".mp4"
    ffmpeg_path: str = "ffmpeg"

    min_free_gb: float = Field(default=20.0, ge=0)
    retention_max_age_days: float = Field(default=14.0, gt=0)
    retention_interval_seconds: float = Field(default=3600.0, gt=0)

    go2rtc_path: Path | None = None
    go2rtc_config: Path | None = None
    go2rtc_port: int = Field(default=1984, ge=1, le=65535)
    cloudflared_path: Path | None = None
    relay_ready_timeout: float = Field(default=10.0, ge=0)

    cameras: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_CAMERA_SOURCES))
    default_camera: str = "1"

    cors_origins: str = "*"

    def model_post_init(self, __context: Any) -> None:
        if self.record_dir is None:
            self.record_dir = self.home / "recordings"
        if self.go2rtc_path is None:
            self.go2rtc_path = self.home / f"go2rtc{_EXE_SUFFIX}"
        if self.go2rtc_config is None:
            self.go2rtc_config = self.home / "go2rtc.yaml"
        if self.cloudflared_path is None:
            self.cloudflared_path = self.home / f"cloudflared{_EXE_SUFFIX}"

    @property
    def api_target(self) -> str:
        return f"http://localhost:{self.app_port}"

    @property
    def relay_target(self) -> str:
        return f"http://localhost:{self.go2rtc_port}"

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def resolve_source(self, stream_id: str | None) -> str:
        """Map a stream id to its source URL, falling back to the default camera."""
        if stream_id is not None and str(stream_id) in self.cameras:
            return self.cameras[str(stream_id)]
        return self.cameras.get(self.default_camera) or next(iter(self.cameras.values()))


# ============================================================================
# Loading
# ============================================================================

_settings: Settings | None = None
_settings_lock = threading.RLock()


def _read_yaml(path: Path) -> dict[str, Any]:
    """Read YAML overrides; any problem is logged and yields {}."""
    if not path.exists():
        logger.debug(f"No config file at {path}")
        return {}
    try:
        with io.open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Ignoring unreadable config {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring config {path}: expected a mapping")
        return {}
    if "cameras" in data:
        cameras = data["cameras"]
        if isinstance(cameras, dict) and cameras:
            data["cameras"] = {str(k): str(v) for k, v in cameras.items()}
        else:
            logger.warning("Ignoring 'cameras' in config: expected a non-empty mapping")
            del data["cameras"]
    logger.info(f"Config: loaded {path}")
    return data


def load_settings(environ: dict[str, str] | None = None) -> Settings:
    """Build settings from defaults, YAML and environment."""
    env = os.environ if environ is None else environ
    home = Path(env.get("RECORDER_HOME") or Path.cwd())
    config_path = Path(env.get("CONFIG_PATH") or home / "config.yml")

    values: dict[str, Any] = {"home": home}
    values.update(_read_yaml(config_path))
    for var, field in _ENV_FIELDS.items():
        if env.get(var):
            values[field] = env[var]

    try:
        settings = Settings(**values)
    except ValidationError as e:
        logger.warning(f"Invalid configuration, using defaults: {e}")
        settings = Settings(home=home)

    if settings.default_camera not in settings.cameras:
        logger.warning(
            f"Default camera '{settings.default_camera}' not in camera table, "
            f"using '{next(iter(settings.cameras))}'"
        )
        settings.default_camera = next(iter(settings.cameras))

    logger.debug(f"Settings: {settings.model_dump()}")
    return settings


def get_settings() -> Settings:
    """Return the cached settings, loading them on first use."""
    global _settings
    with _settings_lock:
        if _settings is None:
            _settings = load_settings()
        return _settings


def reload_settings() -> Settings:
    global _settings
    with _settings_lock:
        _settings = load_settings()
        return _settings
