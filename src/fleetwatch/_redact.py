"""Helpers for safe debug logging.

Provider payloads and notification targets carry secrets (API keys, bearer
tokens, signed webhook URLs) and personal contact data. This module redacts
those fields before they are emitted in DEBUG logs.
"""

from __future__ import annotations

from collections.abc import Mapping, Set
from typing import Any

# Compared after lower-casing and dropping "_" and "-", so "apiKey",
# "api_key" and "API-KEY" all match "apikey".
_SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "apikey",
        "token",
        "accesstoken",
        "authorization",
        "password",
        "secret",
        "clientsecret",
        "cookie",
        # Notification targets
        "recipients",
        "webhookurl",
        "url",
        "phone",
        "email",
    }
)

_REDACTED = "<redacted>"
_MAX_DEPTH = 20


def _is_sensitive(key: Any) -> bool:
    return str(key).lower().replace("_", "").replace("-", "") in _SENSITIVE_KEYS


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a JSON-like redacted copy of *value* suitable for debug logs.

    Mapping values under sensitive keys are replaced wholesale, long strings
    are truncated and bytes are reduced to their length.
    """
    if _depth > _MAX_DEPTH:
        return "<max-depth>"

    match value:
        case None | bool() | int() | float():
            return value
        case str():
            return value if len(value) <= max_string else f"{value[:max_string]}…<truncated>"
        case bytes() | bytearray():
            return f"<bytes:{len(value)}b>"
        case Mapping():
            return {
                str(k): _REDACTED if _is_sensitive(k) else redact_for_log(v, max_string=max_string, _depth=_depth + 1)
                for k, v in value.items()
            }
        case list() | tuple() | Set():
            return [redact_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value]
    return repr(value)
