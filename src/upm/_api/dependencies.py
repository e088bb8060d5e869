"""Task dependency service endpoints.

Endpoints:
  - /health
  - /api/dependencies (add)
  - /api/dependencies/{taskId} (get, update, remove)
  - /api/dependencies/{analyze,optimize,conflicts,circular,impact}
  - /api/critical-path
  - /api/dependencies/visualization
  - /api/analytics
  - /api/system/status

Responses for which the service has a stable shape are validated into
:mod:`upm.models.tasks` models; the analysis payloads are returned as
plain dicts.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any
from urllib.parse import quote

from pydantic import ValidationError

from upm._api._common import call, join_ids
from upm._transport import Transport
from upm.exceptions import UpmTransportError
from upm.models.tasks import (
    ChangeType,
    CircularDependency,
    Dependency,
    DependencyChange,
    DependencyRemoval,
)

_logger = logging.getLogger(__name__)

DEPENDENCIES_ENDPOINT = "/api/dependencies"


def _task_endpoint(task_id: str) -> str:
    return f"{DEPENDENCIES_ENDPOINT}/{quote(task_id, safe='')}"


def _dependency_body(dependencies: Iterable[Dependency | str]) -> list[dict[str, Any]]:
    body: list[dict[str, Any]] = []
    for dep in dependencies:
        if isinstance(dep, str):
            dep = Dependency(task_id=dep)
        payload = dep.to_json_dict()
        if not payload.get("id"):
            payload.pop("id", None)
        body.append(payload)
    return body


def _validate(endpoint: str, model: Any, value: Any) -> Any:
    try:
        return model.model_validate(value)
    except ValidationError as exc:
        raise UpmTransportError(
            f"Unexpected payload from {endpoint}: {exc.error_count()} validation error(s)",
            endpoint=endpoint,
        ) from exc


async def health(transport: Transport) -> dict[str, Any]:
    """Return the service health document (envelope minus bookkeeping)."""
    return await call(transport, "GET", "/health", None)


async def add_dependencies(
    transport: Transport,
    task_id: str,
    dependencies: Iterable[Dependency | str],
    *,
    project_id: str | None = None,
    options: Mapping[str, Any] | None = None,
) -> DependencyChange:
    result = await call(
        transport,
        "POST",
        DEPENDENCIES_ENDPOINT,
        "result",
        body={
            "taskId": task_id,
            "dependencies": _dependency_body(dependencies),
            "projectId": project_id,
            "options": dict(options) if options else None,
        },
    )
    return _validate(DEPENDENCIES_ENDPOINT, DependencyChange, result)


async def get_dependencies(
    transport: Transport,
    task_id: str,
    *,
    include_transitive: bool = False,
    include_conflicts: bool = False,
) -> list[Dependency]:
    """Fetch the dependencies of *task_id*.

    The service answers either with a bare list or with an object carrying
    a ``dependencies`` list (when extra sections were requested); both are
    accepted.
    """
    endpoint = _task_endpoint(task_id)
    payload = await call(
        transport,
        "GET",
        endpoint,
        "dependencies",
        params={
            "includeTransitive": "true" if include_transitive else None,
            "includeConflicts": "true" if include_conflicts else None,
        },
    )
    if isinstance(payload, Mapping):
        payload = payload.get("dependencies", [])
    if not isinstance(payload, list):
        raise UpmTransportError(f"Expected a dependency list from {endpoint}", endpoint=endpoint)
    return [_validate(endpoint, Dependency, item) for item in payload]


async def update_dependencies(
    transport: Transport,
    task_id: str,
    dependencies: Iterable[Dependency | str],
    *,
    options: Mapping[str, Any] | None = None,
) -> DependencyChange:
    endpoint = _task_endpoint(task_id)
    result = await call(
        transport,
        "PUT",
        endpoint,
        "result",
        body={"dependencies": _dependency_body(dependencies), "options": dict(options) if options else None},
    )
    return _validate(endpoint, DependencyChange, result)


async def remove_dependencies(
    transport: Transport,
    task_id: str,
    dependency_ids: Iterable[str] | None = None,
) -> DependencyRemoval:
    """Remove the listed dependencies, or all of them when none are given."""
    endpoint = _task_endpoint(task_id)
    ids = list(dependency_ids) if dependency_ids is not None else None
    result = await call(transport, "DELETE", endpoint, "result", body={"dependencyIds": ids})
    return _validate(endpoint, DependencyRemoval, result)


async def analyze(
    transport: Transport,
    task_ids: Iterable[str] | None = None,
    *,
    project_id: str | None = None,
    options: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    return await call(
        transport,
        "POST",
        f"{DEPENDENCIES_ENDPOINT}/analyze",
        "analysis",
        body={
            "taskIds": list(task_ids) if task_ids is not None else None,
            "projectId": project_id,
            "options": dict(options) if options else None,
        },
    )


async def optimize(
    transport: Transport,
    task_ids: Iterable[str] | None = None,
    *,
    project_id: str | None = None,
    options: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    return await call(
        transport,
        "POST",
        f"{DEPENDENCIES_ENDPOINT}/optimize",
        "optimization",
        body={
            "taskIds": list(task_ids) if task_ids is not None else None,
            "projectId": project_id,
            "options": dict(options) if options else None,
        },
    )


async def critical_path(
    transport: Transport,
    task_ids: Iterable[str] | None = None,
    *,
    project_id: str | None = None,
) -> dict[str, Any]:
    return await call(
        transport,
        "GET",
        "/api/critical-path",
        "criticalPath",
        params={"taskIds": join_ids(task_ids), "projectId": project_id},
    )


async def conflicts(
    transport: Transport,
    task_ids: Iterable[str] | None = None,
    *,
    project_id: str | None = None,
) -> list[dict[str, Any]]:
    result = await call(
        transport,
        "POST",
        f"{DEPENDENCIES_ENDPOINT}/conflicts",
        "conflicts",
        body={"taskIds": list(task_ids) if task_ids is not None else None, "projectId": project_id},
    )
    return list(result or [])


async def circular(
    transport: Transport,
    task_ids: Iterable[str] | None = None,
    *,
    project_id: str | None = None,
) -> list[CircularDependency]:
    endpoint = f"{DEPENDENCIES_ENDPOINT}/circular"
    result = await call(
        transport,
        "POST",
        endpoint,
        "circularDependencies",
        body={"taskIds": list(task_ids) if task_ids is not None else None, "projectId": project_id},
    )
    return [_validate(endpoint, CircularDependency, item) for item in result or []]


async def impact(
    transport: Transport,
    task_id: str,
    change_type: ChangeType | str,
    *,
    options: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    return await call(
        transport,
        "POST",
        f"{DEPENDENCIES_ENDPOINT}/impact",
        "impact",
        body={"taskId": task_id, "changeType": str(change_type), "options": dict(options) if options else None},
    )


async def visualization(
    transport: Transport,
    *,
    task_ids: Iterable[str] | None = None,
    project_id: str | None = None,
    output_format: str | None = None,
) -> dict[str, Any]:
    return await call(
        transport,
        "GET",
        f"{DEPENDENCIES_ENDPOINT}/visualization",
        "visualization",
        params={"taskIds": join_ids(task_ids), "projectId": project_id, "format": output_format},
    )


async def analytics(transport: Transport) -> dict[str, Any]:
    return await call(transport, "GET", "/api/analytics", "analytics")


async def system_status(transport: Transport) -> dict[str, Any]:
    return await call(transport, "GET", "/api/system/status", "status")
