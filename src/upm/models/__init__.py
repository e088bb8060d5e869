"""Data models for upm reports, metrics, jobs, tasks and the build cache."""

from upm.models._base import MutableUpmModel, UpmBaseModel
from upm.models.cache import BuildResult, CacheEntry, CacheStats
from upm.models.jobs import JobKind, JobResult, JobSpec, JobStatus, OnError, RunSummary, Workflow
from upm.models.metrics import CpuMetrics, DiskMetrics, MemoryMetrics, ProcessMetrics, ProcessSample, SystemMetrics
from upm.models.report import Report, ReportStatus
from upm.models.tasks import (
    ChangeType,
    CircularDependency,
    Conflict,
    ConflictType,
    CriticalPathResult,
    Dependency,
    DependencyAnalysis,
    DependencyChange,
    DependencyRemoval,
    DependencyType,
    ImpactLevel,
    ImpactReport,
    RedundantDependency,
    RiskFactor,
    ScheduledTask,
    Severity,
    Task,
    TaskPriority,
    TaskStatus,
)

__all__ = [
    "BuildResult",
    "CacheEntry",
    "CacheStats",
    "ChangeType",
    "CircularDependency",
    "Conflict",
    "ConflictType",
    "CpuMetrics",
    "CriticalPathResult",
    "Dependency",
    "DependencyAnalysis",
    "DependencyChange",
    "DependencyRemoval",
    "DependencyType",
    "DiskMetrics",
    "ImpactLevel",
    "ImpactReport",
    "JobKind",
    "JobResult",
    "JobSpec",
    "JobStatus",
    "MemoryMetrics",
    "MutableUpmModel",
    "OnError",
    "ProcessMetrics",
    "ProcessSample",
    "RedundantDependency",
    "Report",
    "ReportStatus",
    "RiskFactor",
    "RunSummary",
    "ScheduledTask",
    "Severity",
    "SystemMetrics",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "UpmBaseModel",
    "Workflow",
]
