"""Run registered actions and external commands as a batch of jobs.

Jobs run either one after another or concurrently under a worker limit.
Every declared job yields exactly one :class:`JobResult`, in declaration
order, whatever happened to it (success, failure, timeout, cancellation or
being skipped).
"""

from __future__ import annotations

import asyncio
import difflib
import json
import logging
import shlex
import sys
import time
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from upm._process import run_process
from upm.actions.registry import ActionContext, ActionRegistry
from upm.exceptions import UpmActionError, UpmJobError
from upm.models._base import utcnow
from upm.models.jobs import JobKind, JobResult, JobSpec, JobStatus, OnError, RunSummary, Workflow

_logger = logging.getLogger(__name__)


class Orchestrator:
    """Executes :class:`JobSpec` lists against an action registry.

    Parameters
    ----------
    registry : ActionRegistry
        Resolves ``kind=action`` jobs.
    context : ActionContext
        Passed to every dispatched action.
    max_workers : int
        Concurrency limit for parallel runs.
    default_timeout : float, optional
        Timeout for jobs that do not set their own.
    """

    def __init__(
        self,
        registry: ActionRegistry,
        context: ActionContext,
        *,
        max_workers: int = 4,
        default_timeout: float | None = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self._registry = registry
        self._context = context
        self._max_workers = max_workers
        self._default_timeout = default_timeout

    @property
    def max_workers(self) -> int:
        return self._max_workers

    async def run(
        self,
        jobs: Sequence[JobSpec],
        *,
        parallel: bool = False,
        fail_fast: bool = False,
        name: str = "adhoc",
    ) -> RunSummary:
        """Run *jobs* and return one result per job, in declaration order.

        Sequentially, a failed job with ``onError=stop`` skips the jobs after
        it. With *fail_fast* any failure ends the run in both modes: later
        jobs are skipped (sequential) or running ones cancelled (parallel).
        """
        names = [job.name for job in jobs]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise UpmJobError(f"duplicate job name(s): {', '.join(duplicates)}")

        results = [JobResult(name=job.name) for job in jobs]
        mode = f"parallel, {self._max_workers} worker(s)" if parallel else "sequential"
        _logger.info("Starting %s: %d job(s) (%s)", name, len(jobs), mode)
        started = time.monotonic()

        if parallel:
            await self._run_parallel(jobs, results, fail_fast=fail_fast)
        else:
            await self._run_sequential(jobs, results, fail_fast=fail_fast)

        summary = RunSummary(
            workflow=name,
            parallel=parallel,
            results=results,
            duration_seconds=time.monotonic() - started,
        )
        log = _logger.info if summary.ok else _logger.warning
        log(
            "Finished %s in %.2fs: %d succeeded, %d failed, %d timed out, %d cancelled, %d skipped",
            name,
            summary.duration_seconds,
            summary.succeeded,
            summary.failed,
            summary.timed_out,
            summary.cancelled,
            summary.skipped,
        )
        return summary

    async def run_workflow(
        self,
        workflow: Workflow,
        *,
        parallel: bool | None = None,
        fail_fast: bool | None = None,
    ) -> RunSummary:
        """Run *workflow*; explicit arguments override its own settings."""
        orchestrator = self
        if workflow.max_workers is not None and workflow.max_workers != self._max_workers:
            orchestrator = Orchestrator(
                self._registry,
                self._context,
                max_workers=workflow.max_workers,
                default_timeout=self._default_timeout,
            )
        return await orchestrator.run(
            workflow.jobs,
            parallel=workflow.parallel if parallel is None else parallel,
            fail_fast=workflow.fail_fast if fail_fast is None else fail_fast,
            name=workflow.name,
        )

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def _run_sequential(self, jobs: Sequence[JobSpec], results: list[JobResult], *, fail_fast: bool) -> None:
        for index, (job, result) in enumerate(zip(jobs, results, strict=True)):
            try:
                await self._run_job(job, result)
            except asyncio.CancelledError:
                _mark(results[index:], JobStatus.CANCELLED, "cancelled")
                raise
            if not result.ok and (fail_fast or job.on_error == OnError.STOP):
                remaining = results[index + 1 :]
                if remaining:
                    _logger.warning("Job %s failed; skipping %d remaining job(s)", job.name, len(remaining))
                _mark(remaining, JobStatus.SKIPPED, f"skipped after {job.name} failed")
                return

    async def _run_parallel(self, jobs: Sequence[JobSpec], results: list[JobResult], *, fail_fast: bool) -> None:
        semaphore = asyncio.Semaphore(self._max_workers)

        async def worker(job: JobSpec, result: JobResult) -> None:
            try:
                async with semaphore:
                    await self._run_job(job, result)
            except asyncio.CancelledError:
                _mark([result], JobStatus.CANCELLED, "cancelled")
                raise

        tasks = {
            asyncio.create_task(worker(job, result), name=f"upm-job-{job.name}"): (job, result)
            for job, result in zip(jobs, results, strict=True)
        }
        pending = set(tasks)
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                if not fail_fast:
                    continue
                failed = [tasks[t][0].name for t in done if _failed(tasks[t][1])]
                if failed and pending:
                    _logger.warning("Job %s failed; cancelling %d running job(s)", failed[0], len(pending))
                    for task in pending:
                        task.cancel()
                    await asyncio.gather(*pending, return_exceptions=True)
                    pending = set()
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    # ------------------------------------------------------------------
    # Single job
    # ------------------------------------------------------------------

    async def _run_job(self, job: JobSpec, result: JobResult) -> None:
        timeout = job.timeout if job.timeout is not None else self._default_timeout
        result.status = JobStatus.RUNNING
        result.started_at = utcnow()
        started = time.monotonic()
        try:
            for attempt in range(1, job.retries + 2):
                result.attempts = attempt
                await self._attempt(job, result, timeout)
                if result.ok:
                    break
                if attempt <= job.retries:
                    _logger.warning(
                        "Job %s attempt %d/%d %s: %s; retrying in %.1fs",
                        job.name,
                        attempt,
                        job.retries + 1,
                        result.status,
                        result.error,
                        job.retry_delay,
                    )
                    if job.retry_delay:
                        await asyncio.sleep(job.retry_delay)
        finally:
            result.finished_at = utcnow()
            result.duration_seconds = time.monotonic() - started

        if result.ok:
            _logger.info("Job %s succeeded in %.2fs", job.name, result.duration_seconds)
        else:
            _logger.error("Job %s %s: %s", job.name, result.status, result.error)

    async def _attempt(self, job: JobSpec, result: JobResult, timeout: float | None) -> None:
        result.error = None
        try:
            if job.kind == JobKind.ACTION:
                report = await asyncio.wait_for(
                    self._registry.dispatch(job.target, job.params, self._context),
                    timeout,
                )
                result.data = report.data
                result.error = report.error
                result.status = JobStatus.SUCCEEDED if report.ok else JobStatus.FAILED
            else:
                outcome = await run_process(
                    job.command,
                    cwd=Path(job.cwd) if job.cwd else None,
                    env=job.env or None,
                    timeout=timeout,
                )
                result.return_code = outcome.return_code
                result.output = outcome.output
                if outcome.return_code == 0:
                    result.status = JobStatus.SUCCEEDED
                else:
                    result.status = JobStatus.FAILED
                    result.error = f"exited with code {outcome.return_code}"
        except TimeoutError:
            result.status = JobStatus.TIMED_OUT
            result.error = f"timed out after {timeout:g}s"
        except UpmActionError as exc:
            result.status = JobStatus.FAILED
            result.error = str(exc)
        except OSError as exc:
            result.status = JobStatus.FAILED
            program = job.command[0] if job.command else job.target
            result.error = f"could not start {program!r}: {exc}"
        except Exception as exc:
            _logger.debug("Job %s raised", job.name, exc_info=True)
            result.status = JobStatus.FAILED
            result.error = str(exc) or type(exc).__name__


def _mark(results: Iterable[JobResult], status: JobStatus, error: str) -> None:
    now = utcnow()
    for result in results:
        if result.status in (JobStatus.PENDING, JobStatus.RUNNING):
            result.status = status
            result.error = error
            result.finished_at = now


def _failed(result: JobResult) -> bool:
    return result.status not in (JobStatus.SUCCEEDED, JobStatus.CANCELLED)


# ----------------------------------------------------------------------
# Definition files
# ----------------------------------------------------------------------


def _read_json(path: Path, what: str) -> Any:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise UpmJobError(f"{what} not found: {path}") from exc
    except (OSError, json.JSONDecodeError) as exc:
        raise UpmJobError(f"Could not read {what} {path}: {exc}") from exc


def load_workflow(path: Path) -> Workflow:
    """Load a workflow file.

    The file holds either a workflow object (``{"name", "parallel",
    "maxWorkers", "failFast", "jobs"}``) or a bare list of jobs. The name
    defaults to the file stem.

    Raises
    ------
    UpmJobError
        If the file is missing, not JSON, or fails validation.
    """
    path = Path(path)
    data = _read_json(path, "workflow file")
    if isinstance(data, list):
        data = {"jobs": data}
    if not isinstance(data, dict):
        raise UpmJobError(f"Workflow file {path} must contain a JSON object or list")
    data.setdefault("name", path.stem)
    try:
        return Workflow.model_validate(data)
    except ValidationError as exc:
        details = "; ".join(f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in exc.errors())
        raise UpmJobError(f"Invalid workflow {path}: {details}") from exc


def _table_command(action: str, value: Any) -> list[str]:
    if isinstance(value, str):
        argv = shlex.split(value)
    elif isinstance(value, list) and all(isinstance(item, str) for item in value):
        argv = list(value)
    else:
        raise UpmJobError(f"Script table entry {action!r} must be a command string or list of strings")
    if not argv:
        raise UpmJobError(f"Script table entry {action!r} is empty")
    if argv[0].endswith(".py"):
        argv.insert(0, sys.executable)
    return argv


def load_script_table(path: Path) -> dict[str, list[str]]:
    """Load the Quick-Access table mapping action names to commands.

    Values are command strings (shell-split) or argv lists; a leading
    ``*.py`` script runs under the current interpreter.
    """
    path = Path(path)
    data = _read_json(path, "script table")
    if not isinstance(data, dict):
        raise UpmJobError(f"Script table {path} must contain a JSON object")
    return {str(action).strip().lower(): _table_command(action, value) for action, value in data.items()}


def quick_jobs(
    table: Mapping[str, Sequence[str]],
    actions: Iterable[str],
    params: Mapping[str, Any] | None = None,
    *,
    timeout: float | None = None,
) -> list[JobSpec]:
    """Build command jobs for *actions*, forwarding *params* as ``--key value``.

    Repeated actions run once.

    Raises
    ------
    UpmActionError
        If an action is not in *table*.
    """
    extra: list[str] = []
    for key, value in (params or {}).items():
        extra.extend([f"--{key}", str(value)])

    jobs: list[JobSpec] = []
    for action in dict.fromkeys(a.strip().lower() for a in actions if a.strip()):
        command = table.get(action)
        if command is None:
            suggestions = difflib.get_close_matches(action, list(table), n=3, cutoff=0.6)
            message = f"Unknown action {action!r} in script table"
            if suggestions:
                message += f"; did you mean: {', '.join(suggestions)}?"
            raise UpmActionError(message, action=action, suggestions=suggestions)
        jobs.append(
            JobSpec(
                name=action,
                kind=JobKind.COMMAND,
                command=[*command, *extra],
                timeout=timeout,
                on_error=OnError.CONTINUE,
            )
        )
    return jobs
