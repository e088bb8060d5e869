"""High-level async client for the task dependency service."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

import aiohttp

from upm._api import dependencies as _deps_api
from upm._transport import HttpTransport, Transport
from upm.config import UpmConfig
from upm.exceptions import UpmError
from upm.models.tasks import (
    ChangeType,
    CircularDependency,
    Dependency,
    DependencyChange,
    DependencyRemoval,
)

_logger = logging.getLogger(__name__)


class DependencyServiceClient:
    """Async client for the dependency service.

    Usage::

        async with DependencyServiceClient(config) as client:
            await client.add_dependencies("deploy", ["build", "test"])
            path = await client.critical_path(["deploy"])

    Parameters
    ----------
    config : UpmConfig
        Supplies the base URL and the request timeout.
    session : aiohttp.ClientSession, optional
        Externally owned HTTP session. It is not closed on exit.
    transport : Transport, optional
        Replaces the HTTP transport entirely (used by tests).
    """

    def __init__(
        self,
        config: UpmConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._injected_transport = transport
        self._transport: Transport | None = None

    @property
    def base_url(self) -> str:
        return self._config.dependency_service_url

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> DependencyServiceClient:
        if self._injected_transport is not None:
            self._transport = self._injected_transport
            return self
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        self._transport = HttpTransport(self._config, self._http_session)
        _logger.debug("Dependency service client opened for %s", self.base_url)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._transport = None

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise UpmError("Client not initialized. Use 'async with DependencyServiceClient(...) as client:'")
        return self._transport

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    async def health(self) -> dict[str, Any]:
        return await _deps_api.health(self._require_transport())

    async def add_dependencies(
        self,
        task_id: str,
        dependencies: Iterable[Dependency | str],
        *,
        project_id: str | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> DependencyChange:
        """Add prerequisites to *task_id*; bare strings are finish-to-start edges."""
        return await _deps_api.add_dependencies(
            self._require_transport(),
            task_id,
            dependencies,
            project_id=project_id,
            options=options,
        )

    async def get_dependencies(
        self,
        task_id: str,
        *,
        include_transitive: bool = False,
        include_conflicts: bool = False,
    ) -> list[Dependency]:
        return await _deps_api.get_dependencies(
            self._require_transport(),
            task_id,
            include_transitive=include_transitive,
            include_conflicts=include_conflicts,
        )

    async def update_dependencies(
        self,
        task_id: str,
        dependencies: Iterable[Dependency | str],
        *,
        options: Mapping[str, Any] | None = None,
    ) -> DependencyChange:
        return await _deps_api.update_dependencies(self._require_transport(), task_id, dependencies, options=options)

    async def remove_dependencies(
        self,
        task_id: str,
        dependency_ids: Iterable[str] | None = None,
    ) -> DependencyRemoval:
        return await _deps_api.remove_dependencies(self._require_transport(), task_id, dependency_ids)

    # ------------------------------------------------------------------
    # Analyses
    # ------------------------------------------------------------------

    async def analyze(
        self,
        task_ids: Iterable[str] | None = None,
        *,
        project_id: str | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await _deps_api.analyze(self._require_transport(), task_ids, project_id=project_id, options=options)

    async def optimize(
        self,
        task_ids: Iterable[str] | None = None,
        *,
        project_id: str | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await _deps_api.optimize(self._require_transport(), task_ids, project_id=project_id, options=options)

    async def critical_path(
        self,
        task_ids: Iterable[str] | None = None,
        *,
        project_id: str | None = None,
    ) -> dict[str, Any]:
        return await _deps_api.critical_path(self._require_transport(), task_ids, project_id=project_id)

    async def conflicts(
        self,
        task_ids: Iterable[str] | None = None,
        *,
        project_id: str | None = None,
    ) -> list[dict[str, Any]]:
        return await _deps_api.conflicts(self._require_transport(), task_ids, project_id=project_id)

    async def circular(
        self,
        task_ids: Iterable[str] | None = None,
        *,
        project_id: str | None = None,
    ) -> list[CircularDependency]:
        return await _deps_api.circular(self._require_transport(), task_ids, project_id=project_id)

    async def impact(
        self,
        task_id: str,
        change_type: ChangeType | str,
        *,
        options: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await _deps_api.impact(self._require_transport(), task_id, change_type, options=options)

    async def visualization(
        self,
        *,
        task_ids: Iterable[str] | None = None,
        project_id: str | None = None,
        output_format: str | None = None,
    ) -> dict[str, Any]:
        return await _deps_api.visualization(
            self._require_transport(),
            task_ids=task_ids,
            project_id=project_id,
            output_format=output_format,
        )

    async def analytics(self) -> dict[str, Any]:
        return await _deps_api.analytics(self._require_transport())

    async def system_status(self) -> dict[str, Any]:
        return await _deps_api.system_status(self._require_transport())
