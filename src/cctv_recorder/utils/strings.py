"""String helpers for recording names and identifiers.

Pure functions, no logging; callers log results where useful.
"""
from __future__ import annotations

import re
from typing import Any, Final

FILENAME_ILLEGAL_PATTERN: Final[re.Pattern[str]] = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
"""Characters rejected by common filesystems, plus ASCII control characters."""


def sanitize_filename_part(text: Any, default: str) -> str:
    """Make ``text`` safe as part of a filename.

    Illegal characters become ``_``, surrounding whitespace is removed and an
    empty result falls back to ``default``. Non-ASCII text (Thai names etc.)
    is kept as is.

    Examples:
        >>> sanitize_filename_part("John/Doe", "Unknown")
        'John_Doe'
        >>> sanitize_filename_part("   ", "NoBill")
        'NoBill'
    """
    if text is None:
        return default
    cleaned = FILENAME_ILLEGAL_PATTERN.sub("_", str(text)).strip()
    return cleaned or default


def normalize_id(value: Any) -> str | None:
    """Camera/stream ids arrive as JSON strings or numbers; blank means absent."""
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None
