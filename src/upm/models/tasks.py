"""Task dependency models.

Shared by the local dependency engine (:mod:`upm.deps`) and the remote
dependency service client (:mod:`upm.client`); the camelCase aliases match
the service's JSON bodies.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from pydantic import Field, field_validator, model_validator

from upm.models._base import UpmBaseModel, utcnow


class TaskPriority(enum.StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK: dict[TaskPriority, int] = {
    TaskPriority.LOW: 0,
    TaskPriority.MEDIUM: 1,
    TaskPriority.HIGH: 2,
    TaskPriority.CRITICAL: 3,
}


class TaskStatus(enum.StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DependencyType(enum.StrEnum):
    """How a task is constrained by its prerequisite."""

    FINISH_TO_START = "finish_to_start"
    START_TO_START = "start_to_start"
    FINISH_TO_FINISH = "finish_to_finish"


class Severity(enum.StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def _non_empty_id(value: str, field: str) -> str:
    stripped = value.strip()
    if not stripped:
        raise ValueError(f"{field} must be non-empty")
    return stripped


class Task(UpmBaseModel):
    """A unit of work in the dependency graph.

    ``placeholder`` marks tasks that were only ever referenced as a
    prerequisite and never defined.
    """

    id: str
    name: str = ""
    duration: float = Field(default=1.0, ge=0)
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    resources: list[str] = Field(default_factory=list)
    placeholder: bool = False

    @field_validator("id")
    @classmethod
    def _id_non_empty(cls, value: str) -> str:
        return _non_empty_id(value, "id")


class Dependency(UpmBaseModel):
    """Edge from a task to one of its prerequisites (``task_id``)."""

    id: str = ""
    task_id: str
    type: DependencyType = DependencyType.FINISH_TO_START
    lag: float = Field(default=0.0, ge=0)
    strength: float = Field(default=1.0, ge=0, le=1)
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("task_id")
    @classmethod
    def _task_id_non_empty(cls, value: str) -> str:
        return _non_empty_id(value, "task_id")

    def for_task(self, owner: str) -> Dependency:
        """Return a copy whose ``id`` is filled in for *owner*."""
        if self.id:
            return self
        return self.model_copy(update={"id": dependency_id(owner, self.task_id)})


def dependency_id(task_id: str, prerequisite_id: str) -> str:
    return f"{task_id}__{prerequisite_id}"


class DependencyChange(UpmBaseModel):
    task_id: str
    dependencies: list[Dependency]
    new_dependencies: list[Dependency] = Field(default_factory=list)
    total_dependencies: int = 0


class DependencyRemoval(UpmBaseModel):
    task_id: str
    removed_dependencies: list[Dependency] = Field(default_factory=list)
    remaining_dependencies: list[Dependency] = Field(default_factory=list)
    total_dependencies: int = 0


class CircularDependency(UpmBaseModel):
    """A dependency cycle, reported as a closed path (first == last)."""

    cycle: list[str]
    task_id: str
    dependency_task_id: str
    severity: Severity = Severity.HIGH
    type: str = "circular_dependency"

    @model_validator(mode="after")
    def _closed(self) -> CircularDependency:
        if len(self.cycle) < 2 or self.cycle[0] != self.cycle[-1]:
            raise ValueError("cycle must be a closed path")
        return self

    @property
    def members(self) -> list[str]:
        return self.cycle[:-1]


class ScheduledTask(UpmBaseModel):
    task_id: str
    duration: float
    earliest_start: float
    earliest_finish: float
    latest_start: float
    latest_finish: float
    slack: float
    critical: bool


class CriticalPathResult(UpmBaseModel):
    path: list[str] = Field(default_factory=list)
    total_duration: float = 0.0
    schedule: dict[str, ScheduledTask] = Field(default_factory=dict)
    critical_tasks: list[str] = Field(default_factory=list)


class ConflictType(enum.StrEnum):
    DEPENDENCY = "dependency"
    MISSING_DEPENDENCY = "missing_dependency"
    PRIORITY = "priority"
    RESOURCE = "resource"
    STATUS = "status"


class Conflict(UpmBaseModel):
    id: str
    type: ConflictType
    severity: Severity
    task_ids: list[str]
    description: str
    details: dict[str, Any] = Field(default_factory=dict)


class ChangeType(enum.StrEnum):
    DELAY = "delay"
    CANCEL = "cancel"
    COMPLETE = "complete"
    REMOVE_DEPENDENCY = "remove_dependency"
    UPDATE = "update"


class RiskFactor(UpmBaseModel):
    type: str
    severity: Severity
    description: str
    task_ids: list[str] = Field(default_factory=list)


class ImpactLevel(enum.StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ImpactReport(UpmBaseModel):
    task_id: str
    change_type: ChangeType
    direct_dependents: list[str] = Field(default_factory=list)
    affected_tasks: list[str] = Field(default_factory=list)
    task_delays: dict[str, float] = Field(default_factory=dict)
    estimated_delay: float = 0.0
    project_delay: float = 0.0
    risk_factors: list[RiskFactor] = Field(default_factory=list)
    impact_score: float = 0.0
    impact_level: ImpactLevel = ImpactLevel.LOW
    recommendations: list[str] = Field(default_factory=list)
    unblocked_tasks: list[str] = Field(default_factory=list)
    blocked_tasks: list[str] = Field(default_factory=list)


class RedundantDependency(UpmBaseModel):
    task_id: str
    dependency_task_id: str
    implied_by: list[str]


class DependencyAnalysis(UpmBaseModel):
    """Summary of one analysis pass over (part of) the graph."""

    analyzed_at: datetime = Field(default_factory=utcnow)
    task_count: int
    dependency_count: int
    root_tasks: list[str] = Field(default_factory=list)
    leaf_tasks: list[str] = Field(default_factory=list)
    placeholder_tasks: list[str] = Field(default_factory=list)
    circular_dependencies: list[CircularDependency] = Field(default_factory=list)
    conflicts: list[Conflict] = Field(default_factory=list)
    critical_path: CriticalPathResult | None = None
    topological_order: list[str] = Field(default_factory=list)
    redundant_dependencies: list[RedundantDependency] = Field(default_factory=list)

    @property
    def acyclic(self) -> bool:
        return not self.circular_dependencies
