from __future__ import annotations

from collections import namedtuple
from pathlib import Path
from typing import Any

import psutil
import pytest

from upm import metrics
from upm.models.metrics import SystemMetrics

_Mem = namedtuple("_Mem", "rss")


class _FakeProc:
    def __init__(self, **info: Any) -> None:
        self.info = info


def test_collect_processes_counts_and_sorts(monkeypatch: pytest.MonkeyPatch) -> None:
    procs = [
        _FakeProc(pid=1, name="init", status=psutil.STATUS_SLEEPING, memory_info=_Mem(100), cpu_percent=0.0),
        _FakeProc(pid=2, name="big", status=psutil.STATUS_RUNNING, memory_info=_Mem(900), cpu_percent=12.0),
        _FakeProc(pid=3, name="gone", status=psutil.STATUS_ZOMBIE, memory_info=None, cpu_percent=None),
        _FakeProc(pid=4, name="mid", status=psutil.STATUS_SLEEPING, memory_info=_Mem(500), cpu_percent=None),
    ]
    monkeypatch.setattr(metrics.psutil, "process_iter", lambda attrs: iter(procs))

    result = metrics.collect_processes(top=2)

    assert result.count == 4
    assert result.running == 1
    assert result.sleeping == 2
    assert [p.pid for p in result.top_by_memory] == [2, 4]
    assert result.top_by_memory[1].cpu_percent == 0.0


def test_collect_disks_skips_unreadable_paths(tmp_path: Path) -> None:
    disks = metrics.collect_disks([str(tmp_path), str(tmp_path / "missing")])
    assert [d.mountpoint for d in disks] == [str(tmp_path)]
    assert disks[0].total > 0


def test_collect_system_metrics_snapshot(tmp_path: Path) -> None:
    snapshot = metrics.collect_system_metrics(cpu_interval=0.0, top=3, disk_paths=[str(tmp_path)])

    assert isinstance(snapshot, SystemMetrics)
    assert 0.0 <= snapshot.cpu.percent <= 100.0
    assert snapshot.memory.total > 0
    assert snapshot.processes.count >= 1
    assert len(snapshot.processes.top_by_memory) <= 3
    payload = snapshot.to_json_dict()
    assert "collectedAt" in payload
    assert "topByMemory" in payload["processes"]
