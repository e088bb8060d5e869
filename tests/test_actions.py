from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import pytest

from upm.actions import ActionContext, ActionRegistry, default_registry
from upm.exceptions import UpmActionError
from upm.models.report import ReportStatus


@pytest.fixture
def registry() -> ActionRegistry:
    return default_registry()


def test_builtin_actions_are_registered(registry: ActionRegistry) -> None:
    assert registry.names == ["build", "cache-stats", "deps-report", "metrics", "report-index", "status"]
    assert "system_metrics" in registry
    assert registry.resolve("System-Metrics").name == "metrics"
    assert all(spec.help for spec in registry)


def test_duplicate_registration_rejected(registry: ActionRegistry) -> None:
    async def handler(ctx: ActionContext, params: dict[str, Any]) -> None:
        return None

    with pytest.raises(ValueError, match="already registered"):
        registry.register("cache_stats", handler)
    with pytest.raises(ValueError, match="already registered"):
        registry.register("other", handler, aliases=("status",))


def test_unknown_action_suggests_close_names(registry: ActionRegistry) -> None:
    with pytest.raises(UpmActionError) as exc_info:
        registry.resolve("stauts")

    assert exc_info.value.suggestions == ["status"]
    assert "did you mean: status?" in str(exc_info.value)


def test_decorator_uses_docstring_for_help() -> None:
    registry = ActionRegistry()

    @registry.action("greet")
    async def greet(ctx: ActionContext, params: dict[str, Any]) -> dict[str, Any]:
        """Say hello.

        Longer description.
        """
        return {"hello": params.get("name", "world")}

    assert registry.resolve("greet").help == "Say hello."
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_dispatch_writes_success_report(ctx: ActionContext) -> None:
    registry = ActionRegistry()

    @registry.action("greet")
    async def greet(ctx: ActionContext, params: dict[str, Any]) -> dict[str, Any]:
        return {"hello": params["name"]}

    report = await registry.dispatch("greet", {"name": "ada", "api_token": "s3cret"}, ctx)

    assert report.status == ReportStatus.SUCCESS
    assert report.data == {"hello": "ada"}
    assert report.parameters["api_token"] != "s3cret"
    assert report.version
    assert ctx.last_report_path is not None
    saved = json.loads(ctx.last_report_path.read_text(encoding="utf-8"))
    assert saved["action"] == "greet"
    assert saved["status"] == "success"
    assert "s3cret" not in ctx.last_report_path.read_text(encoding="utf-8")


@pytest.mark.asyncio
async def test_dispatch_stores_path_parameters_as_text(ctx: ActionContext, tmp_path: Path) -> None:
    registry = ActionRegistry()

    @registry.action("touch")
    async def touch(ctx: ActionContext, params: dict[str, Any]) -> None:
        return None

    report = await registry.dispatch("touch", {"target": tmp_path / "out.txt", "note": "n" * 1_000}, ctx)

    assert report.parameters["target"] == str(tmp_path / "out.txt")
    assert report.parameters["note"] == "n" * 1_000
    saved = json.loads(ctx.last_report_path.read_text(encoding="utf-8"))
    assert saved["parameters"]["target"] == str(tmp_path / "out.txt")


@pytest.mark.asyncio
async def test_dispatch_records_handler_failure(ctx: ActionContext) -> None:
    registry = ActionRegistry()

    @registry.action("explode")
    async def explode(ctx: ActionContext, params: dict[str, Any]) -> None:
        raise RuntimeError("kaboom")

    report = await registry.dispatch("explode", {}, ctx)

    assert report.status == ReportStatus.FAILED
    assert report.error == "kaboom"
    assert not report.ok
    assert ctx.writer.latest("explode") == report


@pytest.mark.asyncio
async def test_dispatch_wraps_scalar_results_and_skips_writing(ctx: ActionContext) -> None:
    registry = ActionRegistry()

    @registry.action("answer")
    async def answer(ctx: ActionContext, params: dict[str, Any]) -> int:
        return 42

    ctx.write_reports = False
    report = await registry.dispatch("answer", {}, ctx)

    assert report.data == {"result": 42}
    assert ctx.last_report_path is None
    assert ctx.writer.list_reports() == []


@pytest.mark.asyncio
async def test_dispatch_unknown_action_raises(ctx: ActionContext, registry: ActionRegistry) -> None:
    with pytest.raises(UpmActionError):
        await registry.dispatch("nope", {}, ctx)


@pytest.mark.asyncio
async def test_status_and_metrics(ctx: ActionContext, registry: ActionRegistry) -> None:
    report = await registry.dispatch("status", {"interval": "0", "top": "2"}, ctx)

    assert report.ok, report.error
    assert set(report.data) == {"metrics", "cache", "reports"}
    assert report.data["cache"]["hitRate"] is None
    assert len(report.data["metrics"]["processes"]["topByMemory"]) <= 2

    bad = await registry.dispatch("metrics", {"interval": "-1"}, ctx)
    assert not bad.ok
    assert "interval" in (bad.error or "")


@pytest.mark.asyncio
async def test_deps_report(ctx: ActionContext, registry: ActionRegistry, tmp_path: Path) -> None:
    tasks = tmp_path / "tasks.json"
    tasks.write_text(
        json.dumps(
            {
                "tasks": [{"id": "build", "duration": 2}, {"id": "test", "duration": 1}],
                "dependencies": {"test": ["build"]},
            }
        ),
        encoding="utf-8",
    )

    report = await registry.dispatch("deps-report", {"tasks": str(tasks)}, ctx)

    assert report.ok, report.error
    assert report.data["taskCount"] == 2
    assert report.data["criticalPath"]["path"] == ["build", "test"]
    assert report.data["source"] == str(tasks)

    missing = await registry.dispatch("deps-report", {"tasks": str(tmp_path / "nope.json")}, ctx)
    assert "not found" in (missing.error or "")


@pytest.mark.asyncio
async def test_build_action_uses_cache(ctx: ActionContext, registry: ActionRegistry, tmp_path: Path) -> None:
    (tmp_path / "in.txt").write_text("x", encoding="utf-8")
    code = "import pathlib; pathlib.Path('out.txt').write_text('built')"
    params = {"command": [sys.executable, "-c", code], "inputs": "in.txt", "outputs": "out.txt", "cwd": str(tmp_path)}

    first = await registry.dispatch("build", params, ctx)
    second = await registry.dispatch("build", params, ctx)

    assert first.ok, first.error
    assert first.data["cached"] is False
    assert second.data["cached"] is True

    stats = await registry.dispatch("cache-stats", {}, ctx)
    assert stats.data["entries"] == 1
    assert stats.data["hitRate"] == 0.5


@pytest.mark.asyncio
async def test_build_action_failure(ctx: ActionContext, registry: ActionRegistry, tmp_path: Path) -> None:
    params = {"command": [sys.executable, "-c", "import sys; print('bad flag'); sys.exit(4)"], "cwd": str(tmp_path)}

    report = await registry.dispatch("build", params, ctx)

    assert not report.ok
    assert "exited with 4" in (report.error or "")
    assert "bad flag" in (report.error or "")

    missing = await registry.dispatch("build", {}, ctx)
    assert "command" in (missing.error or "")


@pytest.mark.asyncio
async def test_report_index(ctx: ActionContext, registry: ActionRegistry) -> None:
    await registry.dispatch("cache-stats", {}, ctx)
    await registry.dispatch("metrics", {"interval": "x"}, ctx)
    (ctx.writer.output_dir / "garbage.json").write_text("{}", encoding="utf-8")

    report = await registry.dispatch("report-index", {}, ctx)

    assert report.data["total"] == 3
    assert report.data["unreadable"] == 1
    assert report.data["actions"]["cache-stats"]["count"] == 1
    assert report.data["actions"]["metrics"]["failed"] == 1
    assert report.data["actions"]["metrics"]["latestStatus"] == "failed"
