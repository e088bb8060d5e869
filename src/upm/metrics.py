"""Host metrics collection backed by psutil."""

from __future__ import annotations

import logging
import platform
import time
from collections.abc import Iterable
from datetime import UTC, datetime

import psutil

from upm.models.metrics import CpuMetrics, DiskMetrics, MemoryMetrics, ProcessMetrics, ProcessSample, SystemMetrics

_logger = logging.getLogger(__name__)


def collect_cpu(interval: float = 0.1) -> CpuMetrics:
    """Sample CPU utilisation over *interval* seconds."""
    per_cpu = psutil.cpu_percent(interval=interval, percpu=True)
    overall = sum(per_cpu) / len(per_cpu) if per_cpu else 0.0
    try:
        load: tuple[float, float, float] | None = tuple(psutil.getloadavg())  # type: ignore[assignment]
    except (AttributeError, OSError):
        load = None
    return CpuMetrics(
        percent=round(overall, 2),
        per_cpu=[round(value, 2) for value in per_cpu],
        count=psutil.cpu_count(logical=False),
        logical_count=psutil.cpu_count(logical=True),
        load_average=load,
    )


def collect_memory() -> MemoryMetrics:
    vm = psutil.virtual_memory()
    swap = psutil.swap_memory()
    return MemoryMetrics(
        total=vm.total,
        available=vm.available,
        used=vm.used,
        percent=vm.percent,
        swap_total=swap.total,
        swap_used=swap.used,
        swap_percent=swap.percent,
    )


def collect_disks(paths: Iterable[str] | None = None) -> list[DiskMetrics]:
    """Disk usage for *paths*, or for every physical partition."""
    if paths is None:
        targets = [(part.mountpoint, part.device, part.fstype) for part in psutil.disk_partitions(all=False)]
    else:
        targets = [(str(path), "", "") for path in paths]

    disks: list[DiskMetrics] = []
    seen: set[str] = set()
    for mountpoint, device, fstype in targets:
        if mountpoint in seen:
            continue
        seen.add(mountpoint)
        try:
            usage = psutil.disk_usage(mountpoint)
        except OSError as exc:
            _logger.debug("Skipping disk %s: %s", mountpoint, exc)
            continue
        disks.append(
            DiskMetrics(
                mountpoint=mountpoint,
                device=device,
                fstype=fstype,
                total=usage.total,
                used=usage.used,
                free=usage.free,
                percent=usage.percent,
            )
        )
    return disks


def collect_processes(top: int = 5) -> ProcessMetrics:
    """Process counts by state plus the *top* processes by resident memory."""
    samples: list[ProcessSample] = []
    count = running = sleeping = 0
    for proc in psutil.process_iter(["pid", "name", "status", "memory_info", "cpu_percent"]):
        info = proc.info
        count += 1
        status = info.get("status")
        if status == psutil.STATUS_RUNNING:
            running += 1
        elif status in (psutil.STATUS_SLEEPING, psutil.STATUS_IDLE):
            sleeping += 1
        memory_info = info.get("memory_info")
        if memory_info is None:
            # access denied or the process exited mid-iteration
            continue
        samples.append(
            ProcessSample(
                pid=info["pid"],
                name=info.get("name") or "",
                rss_bytes=memory_info.rss,
                cpu_percent=info.get("cpu_percent") or 0.0,
            )
        )
    samples.sort(key=lambda sample: sample.rss_bytes, reverse=True)
    return ProcessMetrics(
        count=count,
        running=running,
        sleeping=sleeping,
        top_by_memory=samples[: max(top, 0)],
    )


def collect_system_metrics(
    *,
    cpu_interval: float = 0.1,
    top: int = 5,
    disk_paths: Iterable[str] | None = None,
) -> SystemMetrics:
    """Collect a full :class:`SystemMetrics` snapshot of this host."""
    boot_ts = psutil.boot_time()
    snapshot = SystemMetrics(
        hostname=platform.node(),
        platform=platform.platform(),
        boot_time=datetime.fromtimestamp(boot_ts, tz=UTC),
        uptime_seconds=round(time.time() - boot_ts, 1),
        cpu=collect_cpu(cpu_interval),
        memory=collect_memory(),
        disks=collect_disks(disk_paths),
        processes=collect_processes(top),
    )
    _logger.debug(
        "Collected metrics: cpu=%.1f%% mem=%.1f%% disks=%d processes=%d",
        snapshot.cpu.percent,
        snapshot.memory.percent,
        len(snapshot.disks),
        snapshot.processes.count,
    )
    return snapshot
