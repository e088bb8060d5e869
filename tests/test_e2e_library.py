from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import unquote

import pytest

from upm.actions import ActionContext, default_registry
from upm.client import DependencyServiceClient
from upm.config import UpmConfig
from upm.deps import DependencyGraph, critical_path, detect_cycles
from upm.exceptions import UpmApiError, UpmTaskNotFoundError
from upm.models.jobs import JobStatus, Workflow
from upm.models.tasks import Dependency
from upm.orchestrator import Orchestrator

_PREFIX = "/api/dependencies/"


@dataclass
class FakeDependencyService:
    """In-process stand-in for the dependency service, backed by the local engine."""

    graph: DependencyGraph = field(default_factory=DependencyGraph)
    calls: dict[str, int] = field(default_factory=dict)

    def _ok(self, **payload: Any) -> dict[str, Any]:
        return {"success": True, "timestamp": "2024-05-01T12:00:00Z", **payload}

    async def request_json(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, str] | None = None,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        self.calls[f"{method} {endpoint}"] = self.calls.get(f"{method} {endpoint}", 0) + 1
        body = body or {}
        params = params or {}
        try:
            if endpoint == "/health":
                return self._ok(status="healthy")
            if (method, endpoint) == ("POST", "/api/dependencies"):
                deps = [Dependency.model_validate(item) for item in body["dependencies"]]
                return self._ok(result=self.graph.add_dependencies(body["taskId"], deps).to_json_dict())
            if (method, endpoint) == ("POST", "/api/dependencies/circular"):
                cycles = detect_cycles(self.graph, body.get("taskIds"))
                return self._ok(circularDependencies=[c.to_json_dict() for c in cycles])
            if endpoint == "/api/critical-path":
                ids = params["taskIds"].split(",") if "taskIds" in params else None
                return self._ok(criticalPath=critical_path(self.graph, ids).to_json_dict())
            if endpoint.startswith(_PREFIX):
                task_id = unquote(endpoint[len(_PREFIX) :])
                self.graph.require_task(task_id)
                if method == "GET":
                    transitive = params.get("includeTransitive") == "true"
                    deps = self.graph.get_dependencies(task_id, transitive=transitive)
                    return self._ok(dependencies=[d.to_json_dict() for d in deps])
                if method == "DELETE":
                    ids = body.get("dependencyIds")
                    removal = (
                        self.graph.remove_dependencies(task_id, ids)
                        if ids
                        else self.graph.remove_all_dependencies(task_id)
                    )
                    return self._ok(result=removal.to_json_dict())
        except UpmTaskNotFoundError as exc:
            return {"success": False, "error": "Task not found", "message": str(exc)}
        return {"success": False, "error": "Not found", "message": f"{method} {endpoint}"}


@pytest.fixture
def service() -> FakeDependencyService:
    return FakeDependencyService()


@pytest.fixture
def client(service: FakeDependencyService) -> DependencyServiceClient:
    return DependencyServiceClient(UpmConfig(), transport=service)


@pytest.mark.asyncio
@pytest.mark.e2e
async def test_dependency_lifecycle(service: FakeDependencyService, client: DependencyServiceClient) -> None:
    async with client:
        assert (await client.health())["status"] == "healthy"

        await client.add_dependencies("test", ["build"])
        change = await client.add_dependencies("deploy", ["test"])
        assert change.total_dependencies == 1

        transitive = await client.get_dependencies("deploy", include_transitive=True)
        assert [d.task_id for d in transitive] == ["test", "build"]

        path = await client.critical_path()
        assert path["path"] == ["build", "test", "deploy"]

        assert await client.circular() == []
        await client.add_dependencies("build", ["deploy"])
        cycles = await client.circular()
        assert len(cycles) == 1
        assert cycles[0].cycle[0] == cycles[0].cycle[-1]

        removal = await client.remove_dependencies("build")
        assert removal.total_dependencies == 0
        assert await client.circular() == []

    assert service.calls["POST /api/dependencies"] == 3
    assert service.calls["POST /api/dependencies/circular"] == 3


@pytest.mark.asyncio
@pytest.mark.e2e
async def test_unknown_task_surfaces_as_api_error(client: DependencyServiceClient) -> None:
    async with client:
        with pytest.raises(UpmApiError) as exc_info:
            await client.get_dependencies("ghost")

    assert exc_info.value.code == "Task not found"
    assert "ghost" in str(exc_info.value)


@pytest.mark.asyncio
@pytest.mark.e2e
async def test_workflow_writes_reports(tmp_path: Path, config: UpmConfig) -> None:
    tasks = tmp_path / "tasks.json"
    tasks.write_text(
        json.dumps({"tasks": [{"id": "a", "duration": 2}], "dependencies": {"b": ["a"]}}),
        encoding="utf-8",
    )
    workflow = Workflow.model_validate(
        {
            "name": "nightly",
            "parallel": True,
            "jobs": [
                {"name": "deps", "target": "deps-report", "params": {"tasks": str(tasks)}},
                {"name": "cache", "target": "cache-stats"},
                {"name": "shell", "command": [sys.executable, "-c", "print('done')"]},
            ],
        }
    )
    ctx = ActionContext.from_config(config)

    summary = await Orchestrator(default_registry(), ctx).run_workflow(workflow)

    assert summary.ok
    assert [r.status for r in summary.results] == [JobStatus.SUCCEEDED] * 3
    assert summary.results[0].data is not None
    assert summary.results[0].data["placeholderTasks"] == ["b"]
    assert summary.results[2].output is not None and "done" in summary.results[2].output
    written = sorted(p.name.split("-2")[0] for p in ctx.writer.list_reports())
    assert written == ["cache-stats", "deps-report"]
