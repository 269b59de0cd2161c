"""
Channel identifier normalization.

YouTube links reach us in many shapes: "@handle", "/@handle", "@@handle",
"/channel/UC...", "//channel//@handle", "user/name", percent-encoded handles.
Everything is reduced to one canonical form so overrides, votes, cache
entries and the fallback dataset all agree on a key.
"""
from __future__ import annotations

import re
from typing import Any, Optional
from urllib.parse import unquote

# Path prefixes (channel/, user/, c/) or runs of slashes, "@" and whitespace
_LEADING_PREFIX = re.compile(r"^(?:/?(?:channel|user|c)/|[\s/@]+)+", re.IGNORECASE)
_TRAILING_SLASHES = re.compile(r"[\s/]+\Z")
_CHANNEL_ID = re.compile(r"^UC[\w-]{22}\Z", re.ASCII)

PLACEHOLDER_VALUES = frozenset({"(unknown)", "null", "undefined"})


def _percent_decode(value: str) -> str:
    try:
        return unquote(value, errors="strict")
    except UnicodeDecodeError:
        return value


def normalize(raw: Optional[str]) -> str:
    """
    Canonical display form of an identifier (original casing kept).

    Stripping is applied until nothing changes, which makes the function
    idempotent. Each pass either shortens the string or stops.
    """
    if not raw:
        return ""
    current = raw if isinstance(raw, str) else str(raw)
    while True:
        candidate = _percent_decode(current.strip())
        candidate = _LEADING_PREFIX.sub("", candidate, count=1)
        candidate = _TRAILING_SLASHES.sub("", candidate)
        if candidate == current:
            return candidate
        current = candidate


def normalize_key(raw: Optional[str]) -> str:
    """Lower-cased storage/lookup key."""
    return normalize(raw).lower()


def is_channel_id(value: Optional[str]) -> bool:
    return bool(_CHANNEL_ID.match(normalize(value)))


def build_channel_url(identifier: Optional[str]) -> str:
    cleaned = normalize(identifier)
    if not cleaned:
        return "#"
    if _CHANNEL_ID.match(cleaned):
        return f"https://www.youtube.com/channel/{cleaned}"
    return f"https://www.youtube.com/@{cleaned}"


def clean_metadata_value(value: Any) -> Optional[str]:
    """Treat empty strings and UI placeholders like "(unknown)" as absent."""
    if value is None:
        return None
    text = value.strip() if isinstance(value, str) else str(value).strip()
    if not text or text.lower() in PLACEHOLDER_VALUES:
        return None
    return text
