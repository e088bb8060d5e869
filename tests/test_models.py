"""Tests for the pydantic models shared across upm."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from upm.models import (
    CacheStats,
    CircularDependency,
    Dependency,
    DependencyType,
    JobKind,
    JobResult,
    JobSpec,
    JobStatus,
    RunSummary,
    Task,
    TaskPriority,
    Workflow,
)


def test_dependency_parses_camel_case_and_fills_id() -> None:
    dep = Dependency.model_validate({"taskId": "build", "type": "start_to_start", "lag": 2, "unknownField": 1})

    assert dep.task_id == "build"
    assert dep.type == DependencyType.START_TO_START
    assert dep.id == ""

    owned = dep.for_task("deploy")
    assert owned.id == "deploy__build"
    assert owned.for_task("other") is owned
    assert owned.to_json_dict()["taskId"] == "build"


@pytest.mark.parametrize("payload", [{"taskId": "  "}, {"taskId": "a", "lag": -1}, {"taskId": "a", "strength": 2}])
def test_dependency_validation(payload: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        Dependency.model_validate(payload)


def test_task_defaults_and_id_trimming() -> None:
    task = Task(id=" build ")

    assert task.id == "build"
    assert task.duration == 1.0
    assert task.priority == TaskPriority.MEDIUM
    assert TaskPriority.CRITICAL.rank > TaskPriority.LOW.rank
    with pytest.raises(ValidationError):
        Task(id="x", duration=-1)


def test_task_is_frozen() -> None:
    task = Task(id="build")
    with pytest.raises(ValidationError):
        task.duration = 3  # type: ignore[misc]


def test_circular_dependency_must_be_closed() -> None:
    cycle = CircularDependency(cycle=["a", "b", "a"], task_id="b", dependency_task_id="a")
    assert cycle.members == ["a", "b"]

    with pytest.raises(ValidationError):
        CircularDependency(cycle=["a", "b"], task_id="b", dependency_task_id="a")


def test_job_spec_kind_inference() -> None:
    action = JobSpec.model_validate({"name": "status"})
    command = JobSpec.model_validate({"name": "lint", "command": ["ruff", "check"], "retryDelay": 1.5})

    assert action.kind == JobKind.ACTION
    assert action.target == "status"
    assert command.kind == JobKind.COMMAND
    assert command.retry_delay == 1.5

    with pytest.raises(ValidationError):
        JobSpec.model_validate({"name": "x", "kind": "command"})
    with pytest.raises(ValidationError):
        JobSpec.model_validate({"name": "x", "timeout": 0})


def test_workflow_rejects_duplicate_names() -> None:
    with pytest.raises(ValidationError, match="duplicate job name"):
        Workflow(jobs=[JobSpec(name="a"), JobSpec(name="a")])


def test_job_result_is_mutable_and_validated() -> None:
    result = JobResult(name="a")
    result.status = JobStatus.RUNNING
    assert not result.ok

    with pytest.raises(ValidationError):
        result.status = "exploded"  # type: ignore[assignment]


def test_run_summary_counts() -> None:
    summary = RunSummary(
        workflow="ci",
        parallel=False,
        results=[
            JobResult(name="a", status=JobStatus.SUCCEEDED),
            JobResult(name="b", status=JobStatus.TIMED_OUT),
            JobResult(name="c", status=JobStatus.SKIPPED),
        ],
    )

    payload = summary.to_json_dict()

    assert payload["succeeded"] == 1
    assert payload["timedOut"] == 1
    assert payload["skipped"] == 1
    assert payload["ok"] is False
    assert payload["results"][1]["status"] == "timed_out"


def test_cache_stats_hit_rate() -> None:
    assert CacheStats().hit_rate is None
    assert CacheStats(hits=3, misses=1).hit_rate == 0.75
