"""Built-in actions available through ``upm run``."""

from __future__ import annotations

import asyncio
import logging
import shlex
from pathlib import Path
from typing import Any

from upm.actions.registry import ActionContext, ActionRegistry
from upm.builder import CachedBuild
from upm.deps import DependencyGraph, analyze, parse_task_ids
from upm.exceptions import UpmActionError, UpmError, UpmReportError
from upm.metrics import collect_system_metrics
from upm.models.cache import CacheStats

_logger = logging.getLogger(__name__)


def _float_param(params: dict[str, Any], key: str, default: float) -> float:
    value = params.get(key)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise UpmActionError(f"parameter {key!r} must be a number, got {value!r}") from exc


def _int_param(params: dict[str, Any], key: str, default: int) -> int:
    value = params.get(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise UpmActionError(f"parameter {key!r} must be an integer, got {value!r}") from exc


def _list_param(params: dict[str, Any], key: str) -> list[str]:
    value = params.get(key)
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if str(item).strip()]
    return parse_task_ids(str(value))


def cache_stats_payload(stats: CacheStats) -> dict[str, Any]:
    payload = stats.to_json_dict()
    payload["hitRate"] = stats.hit_rate
    return payload


async def status(ctx: ActionContext, params: dict[str, Any]) -> dict[str, Any]:
    """System metrics, build cache statistics and report count."""
    metrics = await asyncio.to_thread(
        collect_system_metrics,
        cpu_interval=_float_param(params, "interval", 0.1),
        top=_int_param(params, "top", 5),
    )
    return {
        "metrics": metrics.to_json_dict(),
        "cache": cache_stats_payload(ctx.cache.stats()),
        "reports": {
            "directory": str(ctx.writer.output_dir),
            "count": len(ctx.writer.list_reports()),
        },
    }


async def metrics(ctx: ActionContext, params: dict[str, Any]) -> dict[str, Any]:
    """Current CPU, memory, disk and process metrics."""
    interval = _float_param(params, "interval", 0.1)
    if interval < 0:
        raise UpmActionError("parameter 'interval' must be >= 0")
    snapshot = await asyncio.to_thread(
        collect_system_metrics,
        cpu_interval=interval,
        top=_int_param(params, "top", 5),
    )
    return snapshot.to_json_dict()


async def deps_report(ctx: ActionContext, params: dict[str, Any]) -> dict[str, Any]:
    """Dependency analysis of a local task file."""
    path = Path(str(params.get("tasks") or "tasks.json"))
    if not path.is_file():
        raise UpmError(f"Task file not found: {path}")
    graph = DependencyGraph.load(path)
    task_ids = _list_param(params, "task_ids") or _list_param(params, "taskIds") or None
    result = analyze(graph, task_ids).to_json_dict()
    result["source"] = str(path)
    return result


async def cache_stats(ctx: ActionContext, params: dict[str, Any]) -> dict[str, Any]:
    """Build cache statistics."""
    payload = cache_stats_payload(ctx.cache.stats())
    payload["root"] = str(ctx.cache.root)
    return payload


async def build(ctx: ActionContext, params: dict[str, Any]) -> dict[str, Any]:
    """Run a command through the build cache."""
    command = params.get("command")
    argv = list(command) if isinstance(command, (list, tuple)) else shlex.split(str(command or ""))
    if not argv:
        raise UpmActionError("parameter 'command' is required")
    cwd = Path(str(params["cwd"])) if params.get("cwd") else None
    timeout = _float_param(params, "timeout", 0.0) or ctx.config.job_timeout

    result = await CachedBuild(ctx.cache).run(
        argv,
        _list_param(params, "inputs"),
        _list_param(params, "outputs"),
        cwd=cwd,
        timeout=timeout,
    )
    if not result.ok:
        tail = result.output.strip().splitlines()[-5:]
        raise UpmError(f"Build command exited with {result.exit_code}" + (": " + " | ".join(tail) if tail else ""))
    return result.to_json_dict()


async def report_index(ctx: ActionContext, params: dict[str, Any]) -> dict[str, Any]:
    """Existing reports grouped by action, newest first."""
    actions: dict[str, dict[str, Any]] = {}
    unreadable = 0
    paths = ctx.writer.list_reports()
    for path in paths:
        try:
            report = ctx.writer.read(path)
        except UpmReportError as exc:
            _logger.warning("Skipping report: %s", exc)
            unreadable += 1
            continue
        group = actions.setdefault(
            report.action,
            {"count": 0, "failed": 0, "latest": path.name, "latestStatus": str(report.status)},
        )
        group["count"] += 1
        if not report.ok:
            group["failed"] += 1
    return {
        "directory": str(ctx.writer.output_dir),
        "total": len(paths),
        "unreadable": unreadable,
        "actions": dict(sorted(actions.items())),
    }


def register_builtin_actions(registry: ActionRegistry) -> ActionRegistry:
    registry.register("status", status, help="System metrics, cache statistics and report count")
    registry.register("metrics", metrics, help="System metrics (params: interval, top)", aliases=("system-metrics",))
    registry.register("deps-report", deps_report, help="Analyze a local task file (params: tasks, task_ids)")
    registry.register("cache-stats", cache_stats, help="Build cache statistics")
    registry.register("build", build, help="Cached command run (params: command, inputs, outputs, cwd, timeout)")
    registry.register("report-index", report_index, help="Index of report files grouped by action")
    return registry
