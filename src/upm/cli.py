"""Command line front-end: ``upm [global options] <command> ...``.

Exit codes: 0 on success, 1 when an action, job or upm operation fails,
2 for usage errors (raised by argparse).
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from upm import __version__
from upm._logging import configure_logging
from upm.actions import ActionContext, default_registry
from upm.actions.builtin import cache_stats_payload
from upm.client import DependencyServiceClient
from upm.config import UpmConfig
from upm.deps import (
    DependencyGraph,
    analyze,
    analyze_impact,
    critical_path,
    detect_conflicts,
    detect_cycles,
    parse_task_ids,
    redundant_dependencies,
    to_dot,
)
from upm.exceptions import UpmError
from upm.models._base import utcnow
from upm.models.jobs import RunSummary
from upm.models.report import Report, ReportStatus
from upm.models.tasks import ChangeType, Dependency, DependencyType
from upm.orchestrator import Orchestrator, load_script_table, load_workflow, quick_jobs

_logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Output helpers
# ----------------------------------------------------------------------


def _emit(args: argparse.Namespace, payload: Any) -> None:
    if args.quiet:
        return
    if isinstance(payload, str):
        sys.stdout.write(payload if payload.endswith("\n") else payload + "\n")
        return
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _parse_params(items: Sequence[str] | None) -> dict[str, str]:
    params: dict[str, str] = {}
    for item in items or ():
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise UpmError(f"Parameters must look like KEY=VALUE, got {item!r}")
        params[key.strip()] = value
    return params


def _context(config: UpmConfig) -> ActionContext:
    return ActionContext.from_config(config)


def _print_summary(args: argparse.Namespace, summary: RunSummary) -> None:
    if args.quiet:
        return
    width = max((len(r.name) for r in summary.results), default=4)
    for result in summary.results:
        detail = result.error or ""
        print(f"{result.name:<{width}}  {result.status:<9}  {result.duration_seconds:7.2f}s  {detail}".rstrip())
    print(
        f"Summary: {summary.succeeded} succeeded, {summary.failed} failed, {summary.timed_out} timed out, "
        f"{summary.cancelled} cancelled, {summary.skipped} skipped"
    )


def _record_run(ctx: ActionContext, action: str, summary: RunSummary, parameters: dict[str, Any]) -> None:
    if not ctx.write_reports:
        return
    finished = utcnow()
    report = Report(
        action=action,
        status=ReportStatus.SUCCESS if summary.ok else ReportStatus.FAILED,
        started_at=finished,
        finished_at=finished,
        duration_seconds=summary.duration_seconds,
        parameters=parameters,
        data=summary.to_json_dict(),
        error=None if summary.ok else f"{len(summary.results) - summary.succeeded} job(s) did not succeed",
        version=__version__,
    )
    path = ctx.writer.write(report)
    _logger.info("Report saved to %s", path)


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------


async def _cmd_actions(args: argparse.Namespace, config: UpmConfig) -> int:
    registry = default_registry()
    if args.quiet:
        return 0
    width = max(len(spec.name) for spec in registry)
    for spec in registry:
        aliases = f" (aliases: {', '.join(spec.aliases)})" if spec.aliases else ""
        print(f"{spec.name:<{width}}  {spec.help}{aliases}")
    return 0


async def _cmd_run(args: argparse.Namespace, config: UpmConfig) -> int:
    registry = default_registry()
    ctx = _context(config)
    report = await registry.dispatch(args.action, _parse_params(args.param), ctx)
    _emit(args, report.to_json_dict())
    return 0 if report.ok else 1


async def _cmd_workflow(args: argparse.Namespace, config: UpmConfig) -> int:
    workflow = load_workflow(Path(args.file))
    ctx = _context(config)
    orchestrator = Orchestrator(
        default_registry(),
        ctx,
        max_workers=args.max_workers or workflow.max_workers or config.max_workers,
        default_timeout=args.timeout or config.job_timeout,
    )
    summary = await orchestrator.run(
        workflow.jobs,
        parallel=args.parallel or workflow.parallel,
        fail_fast=args.fail_fast or workflow.fail_fast,
        name=workflow.name,
    )
    _record_run(ctx, "workflow", summary, {"file": str(args.file), "workflow": workflow.name})
    _print_summary(args, summary)
    return 0 if summary.ok else 1


async def _cmd_quick(args: argparse.Namespace, config: UpmConfig) -> int:
    table = load_script_table(Path(args.table))
    jobs = quick_jobs(table, args.actions, _parse_params(args.param), timeout=args.timeout or config.job_timeout)
    ctx = _context(config)
    orchestrator = Orchestrator(default_registry(), ctx, max_workers=args.max_workers or config.max_workers)
    summary = await orchestrator.run(jobs, parallel=args.parallel, name="quick-access")
    _record_run(ctx, "quick-access", summary, {"table": str(args.table), "actions": list(args.actions)})
    _print_summary(args, summary)
    return 0 if summary.ok else 1


def _dependencies_from_args(args: argparse.Namespace) -> list[Dependency]:
    ids = parse_task_ids(args.depends_on)
    if not ids:
        raise UpmError("--depends-on needs at least one task id")
    return [Dependency(task_id=task_id, type=DependencyType(args.type), lag=args.lag) for task_id in ids]


def _deps_local(args: argparse.Namespace) -> Any:
    path = Path(args.tasks)
    graph = DependencyGraph.load(path)
    task_ids = parse_task_ids(getattr(args, "task_ids", None)) or None
    sub = args.deps_command

    if sub == "health":
        raise UpmError("'deps health' needs --remote")
    if sub == "add":
        change = graph.add_dependencies(args.task, _dependencies_from_args(args), strict=args.strict)
        graph.save(path)
        return change.to_json_dict()
    if sub == "update":
        change = graph.update_dependencies(args.task, _dependencies_from_args(args), strict=args.strict)
        graph.save(path)
        return change.to_json_dict()
    if sub == "remove":
        graph.require_task(args.task)
        ids = parse_task_ids(args.ids)
        removal = graph.remove_dependencies(args.task, ids) if ids else graph.remove_all_dependencies(args.task)
        graph.save(path)
        return removal.to_json_dict()
    if sub == "get":
        graph.require_task(args.task)
        deps = graph.get_dependencies(args.task, transitive=args.transitive)
        return {"taskId": args.task, "dependencies": [dep.to_json_dict() for dep in deps]}
    if sub == "analyze":
        return analyze(graph, task_ids).to_json_dict()
    if sub == "circular":
        return [cycle.to_json_dict() for cycle in detect_cycles(graph, task_ids)]
    if sub == "conflicts":
        return [conflict.to_json_dict() for conflict in detect_conflicts(graph, task_ids)]
    if sub == "critical-path":
        return critical_path(graph, task_ids).to_json_dict()
    if sub == "impact":
        return analyze_impact(graph, args.task, ChangeType(args.change), delay=args.delay).to_json_dict()
    if sub == "optimize":
        redundant = redundant_dependencies(graph, task_ids)
        if args.apply and redundant:
            for item in redundant:
                graph.remove_dependencies(item.task_id, [item.dependency_task_id])
            graph.save(path)
            _logger.info("Removed %d redundant dependencies from %s", len(redundant), path)
        return {"redundantDependencies": [item.to_json_dict() for item in redundant], "applied": bool(args.apply)}
    if sub == "graph":
        dot = to_dot(graph, task_ids, highlight=parse_task_ids(args.highlight))
        if args.output:
            Path(args.output).write_text(dot, encoding="utf-8")
            _logger.info("Graph written to %s", args.output)
            return {"output": args.output}
        return dot
    raise UpmError(f"Unknown deps command {sub!r}")


async def _deps_remote(args: argparse.Namespace, config: UpmConfig) -> Any:
    if args.remote:
        config = dataclasses.replace(config, dependency_service_url=args.remote)
    task_ids = parse_task_ids(getattr(args, "task_ids", None)) or None
    sub = args.deps_command
    if sub == "graph" and args.highlight:
        raise UpmError("--highlight applies to local graphs only; the service cannot highlight tasks")

    async with DependencyServiceClient(config) as client:
        if sub == "health":
            return await client.health()
        if sub == "add":
            return (await client.add_dependencies(args.task, _dependencies_from_args(args))).to_json_dict()
        if sub == "update":
            return (await client.update_dependencies(args.task, _dependencies_from_args(args))).to_json_dict()
        if sub == "remove":
            return (await client.remove_dependencies(args.task, parse_task_ids(args.ids) or None)).to_json_dict()
        if sub == "get":
            deps = await client.get_dependencies(args.task, include_transitive=args.transitive)
            return {"taskId": args.task, "dependencies": [dep.to_json_dict() for dep in deps]}
        if sub == "analyze":
            return await client.analyze(task_ids)
        if sub == "circular":
            return [cycle.to_json_dict() for cycle in await client.circular(task_ids)]
        if sub == "conflicts":
            return await client.conflicts(task_ids)
        if sub == "critical-path":
            return await client.critical_path(task_ids)
        if sub == "impact":
            options = {"delay": args.delay} if args.delay else None
            return await client.impact(args.task, ChangeType(args.change), options=options)
        if sub == "optimize":
            return await client.optimize(task_ids)
        if sub == "graph":
            visualization = await client.visualization(task_ids=task_ids)
            if args.output:
                Path(args.output).write_text(json.dumps(visualization, indent=2) + "\n", encoding="utf-8")
                _logger.info("Graph written to %s", args.output)
                return {"output": args.output}
            return visualization
    raise UpmError(f"Unknown deps command {sub!r}")


async def _cmd_deps(args: argparse.Namespace, config: UpmConfig) -> int:
    try:
        if args.remote is not None:
            payload = await _deps_remote(args, config)
        else:
            payload = _deps_local(args)
    except ValueError as exc:
        raise UpmError(str(exc)) from exc
    _emit(args, payload)
    return 0


async def _cmd_cache(args: argparse.Namespace, config: UpmConfig) -> int:
    cache = _context(config).cache
    sub = args.cache_command
    if sub == "stats":
        _emit(args, {**cache_stats_payload(cache.stats()), "root": str(cache.root)})
    elif sub == "list":
        _emit(args, [entry.to_json_dict() for entry in cache.entries()])
    elif sub == "prune":
        if args.max_age is None and args.max_bytes is None:
            raise UpmError("cache prune needs --max-age and/or --max-bytes")
        removed = cache.prune(max_age=args.max_age, max_bytes=args.max_bytes)
        _emit(args, {"removed": removed})
    elif sub == "clear":
        _emit(args, {"removed": cache.clear()})
    elif sub == "verify":
        corrupt = cache.verify()
        _emit(args, {"corrupt": corrupt, "ok": not corrupt})
        return 1 if corrupt else 0
    return 0


async def _cmd_build(args: argparse.Namespace, config: UpmConfig) -> int:
    command = list(args.cmd)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        raise UpmError("build needs a command after '--'")
    params: dict[str, Any] = {"command": command, "inputs": args.input, "outputs": args.output}
    if args.cwd:
        params["cwd"] = args.cwd
    report = await default_registry().dispatch("build", params, _context(config))
    _emit(args, report.to_json_dict())
    return 0 if report.ok else 1


async def _cmd_reports(args: argparse.Namespace, config: UpmConfig) -> int:
    writer = _context(config).writer
    if args.reports_command == "list":
        _emit(args, [str(path) for path in writer.list_reports(args.action)])
        return 0

    target = Path(args.target)
    report = writer.read(target) if target.is_file() else writer.latest(args.target)
    if report is None:
        raise UpmError(f"No report file or reports for action {args.target!r}")
    _emit(args, report.to_json_dict())
    return 0


# ----------------------------------------------------------------------
# Parser
# ----------------------------------------------------------------------


def _add_task_ids(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--task-ids", help="Comma-separated task ids to restrict the analysis to")


def _add_edge_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("task", help="Task id")
    parser.add_argument("--depends-on", required=True, help="Comma-separated prerequisite task ids")
    parser.add_argument(
        "--type",
        default=DependencyType.FINISH_TO_START.value,
        choices=[t.value for t in DependencyType],
        help="Dependency type (default: finish_to_start)",
    )
    parser.add_argument("--lag", type=float, default=0.0, help="Lag between the tasks (default: 0)")
    parser.add_argument("--strict", action="store_true", help="Reject changes that create a cycle")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="upm", description="Universal Project Manager automation toolkit")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--output-dir", help="Report directory (default: $UPM_OUTPUT_DIR or ./reports)")
    parser.add_argument("--log-dir", help="Log file directory (default: $UPM_LOG_DIR or ./logs)")
    parser.add_argument("--log-level", help="Log level (default: $UPM_LOG_LEVEL or INFO)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--quiet", "-q", action="store_true", help="Only log warnings; print no results")
    parser.add_argument("--no-report", action="store_true", help="Do not write JSON report files")
    parser.add_argument("--no-log-file", action="store_true", help="Log to the console only")
    commands = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    p = commands.add_parser("actions", help="List available actions")
    p.set_defaults(handler=_cmd_actions)

    p = commands.add_parser("run", help="Run one action and write its report")
    p.add_argument("action", help="Action name")
    p.add_argument("--param", "-p", action="append", metavar="KEY=VALUE", help="Action parameter (repeatable)")
    p.set_defaults(handler=_cmd_run)

    p = commands.add_parser("workflow", help="Run the jobs of a workflow file")
    p.add_argument("file", help="Workflow JSON file")
    p.add_argument("--parallel", action="store_true", help="Run jobs concurrently")
    p.add_argument("--max-workers", type=int, help="Concurrency limit for --parallel")
    p.add_argument("--timeout", type=float, help="Default per-job timeout in seconds")
    p.add_argument("--fail-fast", action="store_true", help="Cancel remaining jobs after a failure")
    p.set_defaults(handler=_cmd_workflow)

    p = commands.add_parser("quick", help="Run commands from a Quick-Access script table")
    p.add_argument("actions", nargs="+", help="Action names from the table")
    p.add_argument("--table", default="scripts.json", help="Script table JSON file (default: scripts.json)")
    p.add_argument("--param", "-p", action="append", metavar="KEY=VALUE", help="Forwarded as --KEY VALUE")
    p.add_argument("--parallel", action="store_true", help="Run the commands concurrently")
    p.add_argument("--max-workers", type=int, help="Concurrency limit for --parallel")
    p.add_argument("--timeout", type=float, help="Per-command timeout in seconds")
    p.set_defaults(handler=_cmd_quick)

    deps_common = argparse.ArgumentParser(add_help=False)
    deps_common.add_argument("--tasks", default="tasks.json", help="Local task file (default: tasks.json)")
    deps_common.add_argument(
        "--remote",
        nargs="?",
        const="",
        metavar="URL",
        help="Use the dependency service (default URL: $UPM_DEPENDENCY_SERVICE_URL)",
    )
    deps = commands.add_parser("deps", help="Task dependency management")
    deps.set_defaults(handler=_cmd_deps)
    deps_commands = deps.add_subparsers(dest="deps_command", required=True, metavar="SUBCOMMAND")

    for name, help_text in (("add", "Add dependencies to a task"), ("update", "Replace the dependencies of a task")):
        _add_edge_options(deps_commands.add_parser(name, help=help_text, parents=[deps_common]))

    p = deps_commands.add_parser("get", help="Show the dependencies of a task", parents=[deps_common])
    p.add_argument("task", help="Task id")
    p.add_argument("--transitive", action="store_true", help="Include indirect prerequisites")

    p = deps_commands.add_parser("remove", help="Remove dependencies from a task", parents=[deps_common])
    p.add_argument("task", help="Task id")
    p.add_argument("--ids", help="Comma-separated dependency or prerequisite ids (default: all)")

    for name, help_text in (
        ("analyze", "Full dependency analysis"),
        ("circular", "Detect circular dependencies"),
        ("conflicts", "Detect dependency conflicts"),
        ("critical-path", "Compute the critical path"),
    ):
        _add_task_ids(deps_commands.add_parser(name, help=help_text, parents=[deps_common]))

    p = deps_commands.add_parser("optimize", help="Find redundant dependencies", parents=[deps_common])
    _add_task_ids(p)
    p.add_argument("--apply", action="store_true", help="Remove them from the task file")

    p = deps_commands.add_parser("impact", help="Impact of a change to one task", parents=[deps_common])
    p.add_argument("task", help="Task id")
    p.add_argument("--change", required=True, choices=[c.value for c in ChangeType], help="Kind of change")
    p.add_argument("--delay", type=float, default=0.0, help="Delay for --change delay")

    p = deps_commands.add_parser("graph", help="Graphviz DOT export", parents=[deps_common])
    _add_task_ids(p)
    p.add_argument("--highlight", help="Comma-separated task ids to highlight")
    p.add_argument("--output", "-o", help="Write the DOT file here instead of stdout")

    deps_commands.add_parser("health", help="Dependency service health (remote only)", parents=[deps_common])

    cache = commands.add_parser("cache", help="Build cache maintenance")
    cache.set_defaults(handler=_cmd_cache)
    cache_commands = cache.add_subparsers(dest="cache_command", required=True, metavar="SUBCOMMAND")
    cache_commands.add_parser("stats", help="Entry, blob and hit/miss counts")
    cache_commands.add_parser("list", help="List cache entries")
    p = cache_commands.add_parser("prune", help="Evict old entries")
    p.add_argument("--max-age", type=float, help="Remove entries unused for this many seconds")
    p.add_argument("--max-bytes", type=int, help="Shrink the cache to at most this many bytes")
    cache_commands.add_parser("clear", help="Remove everything")
    cache_commands.add_parser("verify", help="Check blob digests")

    p = commands.add_parser("build", help="Run a command through the build cache")
    p.add_argument("--input", "-i", action="append", default=[], help="Input file or directory (repeatable)")
    p.add_argument("--output", "-o", action="append", default=[], help="Output file or directory (repeatable)")
    p.add_argument("--cwd", help="Working directory (default: current directory)")
    p.add_argument("cmd", nargs=argparse.REMAINDER, help="-- COMMAND ARGS...")
    p.set_defaults(handler=_cmd_build)

    reports = commands.add_parser("reports", help="Inspect report files")
    reports.set_defaults(handler=_cmd_reports)
    reports_commands = reports.add_subparsers(dest="reports_command", required=True, metavar="SUBCOMMAND")
    p = reports_commands.add_parser("list", help="List report files, newest first")
    p.add_argument("--action", help="Only reports of this action")
    p = reports_commands.add_parser("show", help="Print a report file or the latest report of an action")
    p.add_argument("target", help="Report path or action name")

    return parser


def _config_from_args(args: argparse.Namespace) -> UpmConfig:
    log_level = "DEBUG" if args.verbose else ("WARNING" if args.quiet and not args.log_level else args.log_level)
    return UpmConfig.from_env(
        output_dir=args.output_dir,
        log_dir=args.log_dir,
        log_level=log_level,
        write_reports=False if args.no_report else None,
    )


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = _config_from_args(args)
    except UpmError as exc:
        print(f"upm: {exc}", file=sys.stderr)
        return 1

    configure_logging(
        config.log_level,
        log_file=None if args.no_log_file else config.log_file,
        color=config.color,
    )

    try:
        return asyncio.run(args.handler(args, config))
    except UpmError as exc:
        _logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        _logger.warning("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
