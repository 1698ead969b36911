"""Normalization helpers.

Lenient parsing and placeholder handling for provider payloads.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

# Sentinel strings providers use for "not available".
_SENTINELS = frozenset({"", "--", "NaN", "nan", "null", "None"})

# Epoch values above this are milliseconds.
_MS_THRESHOLD = 1e11


def safe_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str) and value.strip() in _SENTINELS:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text and text not in _SENTINELS else None


def is_meaningful(value: Any) -> bool:
    """Return True if the value carries information.

    Placeholder strings, empty containers and ``None`` are not meaningful.
    """

    if value is None:
        return False
    if isinstance(value, str) and value.strip() in _SENTINELS:
        return False
    if isinstance(value, float) and math.isnan(value):
        return False
    if value == {}:
        return False
    return bool(value != [])


def dig(data: Any, path: str) -> Any:
    """Follow a dotted *path* through nested mappings and lists.

    Integer segments index into lists (``"engineStates.0.value"``). Returns
    ``None`` as soon as a segment is missing.
    """
    current = data
    for segment in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(segment)
        elif isinstance(current, list) and segment.isdigit():
            index = int(segment)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def pick(data: Mapping[str, Any], *paths: str) -> Any:
    """Return the first meaningful value among *paths* (dotted, see :func:`dig`)."""
    for path in paths:
        value = dig(data, path)
        if is_meaningful(value):
            return value
    return None


def normalize_timestamp_seconds(value: Any) -> float | None:
    """Normalize epoch timestamps to epoch seconds.

    - Empty/missing -> None
    - <= 0 -> None
    - Milliseconds (> 1e11) -> seconds
    """

    ts = safe_float(value)
    if ts is None or ts <= 0:
        return None
    if ts > _MS_THRESHOLD:
        ts /= 1000.0
    return ts


def parse_timestamp(value: Any) -> datetime | None:
    """Convert a provider timestamp to a tz-aware UTC datetime.

    Accepts datetimes (naive values are taken as UTC), ISO-8601 strings
    (including a trailing ``Z``), and epoch seconds or milliseconds as numbers
    or numeric strings. Returns ``None`` when the value cannot be interpreted.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)

    seconds = normalize_timestamp_seconds(value)
    if seconds is not None:
        try:
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = f"{text[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed.replace(tzinfo=UTC) if parsed.tzinfo is None else parsed.astimezone(UTC)
    return None
