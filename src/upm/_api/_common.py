"""Shared helpers for dependency service endpoint modules.

Centralizes the ``{"success": ..., <key>: ...}`` envelope handling so the
endpoint functions stay one request each. Internal to upm.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from upm._transport import Transport, error_message
from upm.exceptions import UpmApiError, UpmTransportError


def unwrap(endpoint: str, response: Mapping[str, Any], key: str | None) -> Any:
    """Return ``response[key]`` after checking the success flag.

    ``key=None`` returns the whole envelope minus bookkeeping fields.
    """
    if response.get("success") is False:
        raise UpmApiError(
            f"{endpoint} failed: {error_message(response, 'request failed')}",
            code=str(response.get("error", "")),
            endpoint=endpoint,
        )
    if key is None:
        return {k: v for k, v in response.items() if k not in {"success", "timestamp"}}
    if key not in response:
        raise UpmTransportError(f"Missing {key!r} field from {endpoint}", endpoint=endpoint)
    return response[key]


def join_ids(task_ids: Iterable[str] | None) -> str | None:
    if task_ids is None:
        return None
    joined = ",".join(task_ids)
    return joined or None


async def call(
    transport: Transport,
    method: str,
    endpoint: str,
    key: str | None,
    *,
    params: Mapping[str, str | None] | None = None,
    body: Mapping[str, Any] | None = None,
) -> Any:
    clean_params = {k: v for k, v in (params or {}).items() if v is not None}
    clean_body = {k: v for k, v in body.items() if v is not None} if body is not None else None
    response = await transport.request_json(method, endpoint, params=clean_params or None, body=clean_body)
    return unwrap(endpoint, response, key)
