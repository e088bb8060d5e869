"""Helpers for safe debug logging.

Action parameters, workflow environments and service payloads may carry
credentials. This module redacts sensitive fields before they reach a log
line or a report file.
"""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from typing import Any

_SENSITIVE_VALUE_KEYS: frozenset[str] = frozenset(
    {
        "password",
        "passwd",
        "secret",
        "token",
        "accesstoken",
        "refreshtoken",
        "apikey",
        "api_key",
        "authorization",
        "cookie",
        "credentials",
        "privatekey",
        "private_key",
    }
)

_SENSITIVE_SUFFIXES: tuple[str, ...] = ("_token", "_secret", "_password")


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower().replace("-", "_")
    if lowered in _SENSITIVE_VALUE_KEYS or lowered.replace("_", "") in _SENSITIVE_VALUE_KEYS:
        return True
    return lowered.endswith(_SENSITIVE_SUFFIXES)


def redact_for_log(value: Any, *, max_string: int | None = 512, _depth: int = 0) -> Any:
    """Return a JSON-friendly copy of *value* with sensitive fields masked.

    Parameters
    ----------
    value : Any
        Mapping, sequence or scalar to copy.
    max_string : int, optional
        Strings longer than this are cut; ``None`` keeps them whole, which is
        what report files use.
    """
    if _depth > 20:
        return "<max-depth>"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, os.PathLike):
        value = os.fsdecode(value)
    if isinstance(value, str):
        if max_string is not None and len(value) > max_string:
            return f"{value[:max_string]}…<truncated>"
        return value
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        redacted: dict[str, Any] = {}
        for k, v in value.items():
            key = str(k)
            if is_sensitive_key(key):
                redacted[key] = "<redacted>"
            else:
                redacted[key] = redact_for_log(v, max_string=max_string, _depth=_depth + 1)
        return redacted
    if isinstance(value, (Sequence, set, frozenset)):
        return [redact_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value]
    return str(value)


def redact_for_report(params: Mapping[str, Any]) -> dict[str, Any]:
    """Parameters as stored in a report: masked, untruncated, paths as text."""
    return redact_for_log(dict(params), max_string=None)
