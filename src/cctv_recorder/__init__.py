"""CCTV recorder: per-camera ffmpeg recording, media serving and tunnel supervision."""

__version__ = "1.0.0"
