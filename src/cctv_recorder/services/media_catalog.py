"""Recording catalog and byte-range file serving.

Listing reads filesystem metadata on every call; nothing is cached. Serving
is split in two steps so the HTTP layer stays thin:

    prepare(filename, range_header) -> MediaSlice (path, span, headers)
    iter_file(path, start, end)     -> chunks for a streaming response

Range Handling:
    ``Range: bytes=<start>-<end>`` with end optional (defaults to the last
    byte, clamped to it when larger). start >= size, end < start or any other
    form is rejected with RangeNotSatisfiable.
"""
from __future__ import annotations

import logging
import mimetypes
import os
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Final, Iterator
from urllib.parse import quote

from .. import metrics
from .exceptions import MediaNotFound, RangeNotSatisfiable

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

RANGE_PATTERN: Final[re.Pattern[str]] = re.compile(r"bytes=(\d+)-(\d*)", re.IGNORECASE)
STREAM_CHUNK_SIZE: Final[int] = 64 * 1024
DEFAULT_CONTENT_TYPE: Final[str] = "video/mp4"
MEDIA_URL_PREFIX: Final[str] = "/recordings/"


def file_created_at(st: os.stat_result) -> float:
    """Creation time where the platform records it, else modification time."""
    return getattr(st, "st_birthtime", None) or st.st_mtime


# ============================================================================
# Data
# ============================================================================

@dataclass(frozen=True, slots=True)
class MediaFile:
    filename: str
    size: int
    created: float

    def to_dict(self) -> dict[str, Any]:
        created = datetime.fromtimestamp(self.created).astimezone()
        date = created.strftime("%d/%m/%Y")
        time_of_day = created.strftime("%H:%M:%S")
        return {
            "filename": self.filename,
            "url": MEDIA_URL_PREFIX + quote(self.filename, safe=""),
            "size": self.size,
            "sizeMB": f"{self.size / (1024 * 1024):.2f} MB",
            "date": date,
            "time": time_of_day,
            "datetime": f"{date} {time_of_day}",
            "created": created.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class ByteRange:
    start: int
    end: int
    size: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def content_range(self) -> str:
        return f"bytes {self.start}-{self.end}/{self.size}"


@dataclass(frozen=True, slots=True)
class MediaSlice:
    path: Path
    span: ByteRange
    partial: bool
    content_type: str

    @property
    def headers(self) -> dict[str, str]:
        headers = {
            "Content-Length": str(self.span.length),
            "Accept-Ranges": "bytes",
            "Content-Disposition": f"inline; filename*=UTF-8''{quote(self.path.name, safe='')}",
        }
        if self.partial:
            headers["Content-Range"] = self.span.content_range
        return headers


def parse_range(header: str, file_size: int) -> ByteRange:
    """Parse a single ``bytes=start-end`` range against ``file_size``."""
    match = RANGE_PATTERN.fullmatch(header.strip())
    if match is None:
        raise RangeNotSatisfiable(header, file_size)
    start = int(match.group(1))
    end = int(match.group(2)) if match.group(2) else file_size - 1
    end = min(end, file_size - 1)
    if start >= file_size or end < start:
        raise RangeNotSatisfiable(header, file_size)
    return ByteRange(start=start, end=end, size=file_size)


def iter_file(path: Path, start: int, end: int, chunk_size: int = STREAM_CHUNK_SIZE) -> Iterator[bytes]:
    """Yield bytes ``[start, end]`` of ``path``."""
    remaining = end - start + 1
    with open(path, "rb") as f:
        f.seek(start)
        while remaining > 0:
            chunk = f.read(min(chunk_size, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            metrics.media_bytes_served_total.inc(len(chunk))
            yield chunk


# ============================================================================
# Catalog
# ============================================================================

class MediaCatalog:
    """Completed recordings in the recording directory."""

    def __init__(self, record_dir: Path, extension: str = ".mp4") -> None:
        self.record_dir = Path(record_dir)
        self.extension = extension.lower()

    def list_media(self) -> list[MediaFile]:
        """Non-empty recordings, newest first. Failures yield []."""
        try:
            entries = list(os.scandir(self.record_dir))
        except OSError as e:
            logger.error(f"Cannot list {self.record_dir}: {e}")
            return []

        files: list[MediaFile] = []
        for entry in entries:
            if not entry.name.lower().endswith(self.extension):
                continue
            try:
                if not entry.is_file():
                    continue
                st = entry.stat()
            except OSError as e:
                logger.debug(f"Skipping {entry.name}: {e}")
                continue
            # zero bytes: encoder still starting or output broken
            if st.st_size == 0:
                continue
            files.append(MediaFile(filename=entry.name, size=st.st_size, created=file_created_at(st)))

        files.sort(key=lambda m: (m.created, m.filename), reverse=True)
        logger.debug(f"Listed {len(files)} recording(s)")
        return files

    def resolve(self, filename: str) -> Path:
        """Map a decoded filename to a file inside the recording directory."""
        if (
            not filename
            or filename in (".", "..")
            or "/" in filename
            or "\\" in filename
            or "\x00" in filename
        ):
            raise MediaNotFound(filename)
        path = self.record_dir / filename
        if not path.is_file():
            raise MediaNotFound(filename)
        return path

    def prepare(self, filename: str, range_header: str | None = None) -> MediaSlice:
        """Resolve the file and the byte span to send.

        Raises:
            MediaNotFound: No such recording
            RangeNotSatisfiable: Range outside the file or malformed
        """
        path = self.resolve(filename)
        try:
            size = path.stat().st_size
        except FileNotFoundError as e:
            # removed since resolve(), e.g. by the retention sweep
            raise MediaNotFound(filename) from e
        content_type = mimetypes.guess_type(path.name)[0] or DEFAULT_CONTENT_TYPE

        if not range_header:
            return MediaSlice(path, ByteRange(0, size - 1, size), False, content_type)
        return MediaSlice(path, parse_range(range_header, size), True, content_type)
