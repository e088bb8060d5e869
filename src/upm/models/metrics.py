"""System metrics snapshot models."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from upm.models._base import UpmBaseModel, utcnow


class CpuMetrics(UpmBaseModel):
    percent: float = Field(ge=0)
    per_cpu: list[float] = Field(default_factory=list)
    count: int | None = None
    logical_count: int | None = None
    load_average: tuple[float, float, float] | None = None


class MemoryMetrics(UpmBaseModel):
    total: int
    available: int
    used: int
    percent: float
    swap_total: int = 0
    swap_used: int = 0
    swap_percent: float = 0.0


class DiskMetrics(UpmBaseModel):
    mountpoint: str
    device: str = ""
    fstype: str = ""
    total: int
    used: int
    free: int
    percent: float


class ProcessSample(UpmBaseModel):
    pid: int
    name: str = ""
    rss_bytes: int = 0
    cpu_percent: float = 0.0


class ProcessMetrics(UpmBaseModel):
    count: int
    running: int = 0
    sleeping: int = 0
    top_by_memory: list[ProcessSample] = Field(default_factory=list)


class SystemMetrics(UpmBaseModel):
    """Point-in-time snapshot of host resource usage."""

    collected_at: datetime = Field(default_factory=utcnow)
    hostname: str = ""
    platform: str = ""
    boot_time: datetime | None = None
    uptime_seconds: float | None = None
    cpu: CpuMetrics
    memory: MemoryMetrics
    disks: list[DiskMetrics] = Field(default_factory=list)
    processes: ProcessMetrics
