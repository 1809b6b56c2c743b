"""Shared validation functions for all entry points.

Pure functions with no MCP or Click dependencies.
"""

from __future__ import annotations

import unicodedata
from typing import Any

_MAX_HOLDER_LENGTH = 128


def sanitize_holder(value: Any) -> tuple[str, str | None]:
    """Validate and clean a holder identity.

    Returns (cleaned_holder, None) on success or ("", error_message) on failure.
    Strips whitespace, then checks: non-empty, max length, no control/format chars.
    """
    if not isinstance(value, str):
        return ("", "holder must be a string")
    # Reject "\nbad" rather than silently absorbing the newline via strip().
    for ch in value:
        if unicodedata.category(ch).startswith("C"):
            return ("", f"holder must not contain control characters (found U+{ord(ch):04X})")
    cleaned = value.strip()
    if not cleaned:
        return ("", "holder must not be empty")
    if len(cleaned) > _MAX_HOLDER_LENGTH:
        return ("", f"holder must be at most {_MAX_HOLDER_LENGTH} characters")
    return (cleaned, None)


def require_holder(value: Any) -> str:
    """Return the sanitized holder or raise ValueError."""
    cleaned, err = sanitize_holder(value)
    if err:
        raise ValueError(err)
    return cleaned
