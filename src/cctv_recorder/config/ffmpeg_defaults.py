"""FFmpeg recording parameters.

Single source of truth for the encoder command line. Video is copied
untouched; audio is re-encoded to 8 kHz mono AAC so that camera audio codecs
(G.711 etc.) fit into an MP4 container.
"""
from __future__ import annotations

from pathlib import Path
from typing import Final

INPUT_PARAMS: Final[list[str]] = [
    "-rtsp_transport", "tcp",
]
"""Placed before ``-i``."""

OUTPUT_PARAMS: Final[list[str]] = [
    "-c:v", "copy",
    "-c:a", "aac",
    "-ar", "8000",
    "-ac", "1",
    "-movflags", "+faststart",
    "-y",
]
"""Placed between the input URL and the output path."""

GRACEFUL_STOP_COMMAND: Final[bytes] = b"q"
"""Written to ffmpeg's stdin to finish the container and exit."""


def build_record_args(source_url: str, output_path: Path | str) -> list[str]:
    """Arguments (without the executable) for recording ``source_url`` to ``output_path``."""
    return [*INPUT_PARAMS, "-i", source_url, *OUTPUT_PARAMS, str(output_path)]
