"""Orchestrator job, workflow and result models."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from pydantic import Field, field_validator, model_validator

from upm.models._base import MutableUpmModel, UpmBaseModel


class JobKind(enum.StrEnum):
    ACTION = "action"
    COMMAND = "command"


class OnError(enum.StrEnum):
    STOP = "stop"
    CONTINUE = "continue"


class JobStatus(enum.StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


class JobSpec(UpmBaseModel):
    """One unit of orchestrated work.

    ``kind=action`` dispatches ``target`` through the action registry with
    ``params``; ``kind=command`` runs ``command`` as a subprocess.
    """

    name: str
    kind: JobKind = JobKind.ACTION
    target: str = ""
    command: list[str] = Field(default_factory=list)
    params: dict[str, Any] = Field(default_factory=dict)
    timeout: float | None = Field(default=None, gt=0)
    retries: int = Field(default=0, ge=0)
    retry_delay: float = Field(default=0.0, ge=0)
    on_error: OnError = OnError.STOP
    cwd: str | None = None
    env: dict[str, str] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def _name_non_empty(cls, value: str) -> str:
        name = value.strip()
        if not name:
            raise ValueError("name must be non-empty")
        return name

    @model_validator(mode="before")
    @classmethod
    def _infer_kind(cls, values: Any) -> Any:
        # {"name": "x", "command": [...]} without an explicit kind is a command job
        if isinstance(values, dict) and "kind" not in values and values.get("command"):
            values = {**values, "kind": JobKind.COMMAND}
        return values

    @model_validator(mode="after")
    def _check_target(self) -> JobSpec:
        if self.kind == JobKind.ACTION and not self.target.strip():
            object.__setattr__(self, "target", self.name)
        if self.kind == JobKind.COMMAND and not self.command:
            raise ValueError(f"job {self.name!r}: command jobs need a non-empty command")
        return self


class Workflow(UpmBaseModel):
    name: str = "workflow"
    parallel: bool = False
    max_workers: int | None = Field(default=None, ge=1)
    fail_fast: bool = False
    jobs: list[JobSpec]

    @model_validator(mode="after")
    def _unique_names(self) -> Workflow:
        seen: set[str] = set()
        for job in self.jobs:
            if job.name in seen:
                raise ValueError(f"duplicate job name {job.name!r}")
            seen.add(job.name)
        return self


class JobResult(MutableUpmModel):
    name: str
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration_seconds: float = 0.0
    return_code: int | None = None
    output: str | None = None
    error: str | None = None
    data: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return self.status == JobStatus.SUCCEEDED


class RunSummary(UpmBaseModel):
    workflow: str
    parallel: bool
    results: list[JobResult]
    duration_seconds: float = 0.0

    def _count(self, status: JobStatus) -> int:
        return sum(1 for result in self.results if result.status == status)

    @property
    def succeeded(self) -> int:
        return self._count(JobStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        return self._count(JobStatus.FAILED)

    @property
    def timed_out(self) -> int:
        return self._count(JobStatus.TIMED_OUT)

    @property
    def cancelled(self) -> int:
        return self._count(JobStatus.CANCELLED)

    @property
    def skipped(self) -> int:
        return self._count(JobStatus.SKIPPED)

    @property
    def ok(self) -> bool:
        return all(result.ok for result in self.results)

    def to_json_dict(self) -> dict[str, Any]:
        payload = super().to_json_dict()
        payload.update(
            {
                "succeeded": self.succeeded,
                "failed": self.failed,
                "timedOut": self.timed_out,
                "cancelled": self.cancelled,
                "skipped": self.skipped,
                "ok": self.ok,
            }
        )
        return payload
