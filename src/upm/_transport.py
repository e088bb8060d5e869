"""HTTP transport for the task dependency service."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from upm._redact import redact_for_log
from upm.config import UpmConfig
from upm.exceptions import UpmApiError, UpmTransportError

_logger = logging.getLogger(__name__)

USER_AGENT = "upm/dependency-client"


class Transport(Protocol):
    """Structural transport interface used by endpoint modules.

    Tests pass simple fakes implementing this; production code uses
    :class:`HttpTransport`.
    """

    async def request_json(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, str] | None = None,
        body: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        ...


def error_message(payload: Mapping[str, Any], fallback: str) -> str:
    error = payload.get("error")
    message = payload.get("message")
    if error and message:
        return f"{error}: {message}"
    return str(error or message or fallback)


class HttpTransport:
    """JSON-over-HTTP transport backed by an aiohttp session."""

    def __init__(self, config: UpmConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    async def request_json(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, str] | None = None,
        body: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send one request and return the decoded JSON object.

        Raises
        ------
        UpmApiError
            The service answered with an error status and a JSON envelope.
        UpmTransportError
            Network failure, non-JSON body, or error status without envelope.
        """
        url = f"{self._config.dependency_service_url}{endpoint}"
        headers = {"accept": "application/json", "user-agent": USER_AGENT}
        _logger.debug("%s %s params=%s body=%s", method, url, dict(params or {}), redact_for_log(body))

        try:
            async with self._http.request(
                method,
                url,
                params=dict(params) if params else None,
                json=dict(body) if body is not None else None,
                headers=headers,
                timeout=self._timeout,
            ) as resp:
                status = resp.status
                text = await resp.text()
        except aiohttp.ClientError as exc:
            raise UpmTransportError(f"Request to {endpoint} failed: {exc}", endpoint=endpoint) from exc
        except TimeoutError as exc:
            raise UpmTransportError(
                f"Request to {endpoint} timed out after {self._config.request_timeout}s",
                endpoint=endpoint,
            ) from exc

        return parse_response(endpoint, status, text)


def parse_response(endpoint: str, status: int, text: str) -> dict[str, Any]:
    """Decode a service response body, mapping failures to exceptions."""
    try:
        payload = json.loads(text) if text.strip() else {}
    except json.JSONDecodeError as exc:
        raise UpmTransportError(
            f"Invalid JSON from {endpoint} (HTTP {status}): {text[:200]}",
            status_code=status,
            endpoint=endpoint,
        ) from exc

    if status >= 400:
        if isinstance(payload, dict) and payload.get("success") is False:
            raise UpmApiError(
                error_message(payload, f"HTTP {status}"),
                code=str(payload.get("error", "")),
                endpoint=endpoint,
                status_code=status,
            )
        raise UpmTransportError(
            f"HTTP {status} from {endpoint}: {text[:200]}",
            status_code=status,
            endpoint=endpoint,
        )

    if not isinstance(payload, dict):
        raise UpmTransportError(f"Expected a JSON object from {endpoint}", status_code=status, endpoint=endpoint)
    return payload
