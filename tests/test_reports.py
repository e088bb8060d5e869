from __future__ import annotations

import os
from datetime import UTC, datetime
from pathlib import Path

import pytest

from upm.exceptions import UpmReportError
from upm.models.report import Report, ReportStatus
from upm.reports import ReportWriter, slugify, write_json_atomic


def _report(action: str = "status", second: int = 0, **kwargs: object) -> Report:
    stamp = datetime(2024, 5, 1, 12, 0, second, tzinfo=UTC)
    return Report(action=action, status=ReportStatus.SUCCESS, started_at=stamp, finished_at=stamp, **kwargs)


def test_slugify() -> None:
    assert slugify("Deps Report") == "deps-report"
    assert slugify("  build/ci  ") == "build-ci"
    assert slugify("***") == "report"


def test_write_and_read_round_trip(tmp_path: Path) -> None:
    writer = ReportWriter(tmp_path / "reports")
    report = _report(parameters={"top": "3"}, data={"cpu": {"percent": 12.5}})

    path = writer.write(report)

    assert path.name == "status-20240501-120000-000000.json"
    assert '"startedAt"' in path.read_text(encoding="utf-8")
    loaded = writer.read(path)
    assert loaded == report


def test_list_reports_newest_first_and_filtered(tmp_path: Path) -> None:
    writer = ReportWriter(tmp_path)
    older = writer.write(_report("status", second=1))
    newer = writer.write(_report("status", second=2))
    other = writer.write(_report("metrics", second=3))
    os.utime(older, (1_000, 1_000))
    os.utime(newer, (2_000, 2_000))
    os.utime(other, (3_000, 3_000))

    assert writer.list_reports() == [other, newer, older]
    assert writer.list_reports("status") == [newer, older]
    assert writer.latest("status") == writer.read(newer)
    assert writer.latest("unknown") is None


def test_list_reports_does_not_match_longer_action_names(tmp_path: Path) -> None:
    writer = ReportWriter(tmp_path)
    prod = writer.write(_report("deploy-prod", second=5))

    assert writer.list_reports("deploy") == []
    assert writer.latest("deploy") is None

    plain = writer.write(_report("deploy", second=1))
    assert writer.list_reports("deploy") == [plain]
    assert writer.list_reports("deploy-prod") == [prod]
    assert writer.latest("deploy") == writer.read(plain)


def test_list_reports_missing_directory(tmp_path: Path) -> None:
    assert ReportWriter(tmp_path / "nope").list_reports() == []


def test_read_invalid_report_raises(tmp_path: Path) -> None:
    bad = tmp_path / "bad.json"
    bad.write_text('{"status": "success"}', encoding="utf-8")
    with pytest.raises(UpmReportError, match="Invalid report"):
        ReportWriter(tmp_path).read(bad)
    with pytest.raises(UpmReportError, match="Could not read"):
        ReportWriter(tmp_path).read(tmp_path / "missing.json")


def test_write_json_atomic_leaves_no_temp_files(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "data.json"
    write_json_atomic(target, {"a": 1})
    write_json_atomic(target, {"a": 2})

    assert target.read_text(encoding="utf-8") == '{\n  "a": 2\n}\n'
    assert [p.name for p in target.parent.iterdir()] == ["data.json"]


def test_report_requires_action() -> None:
    with pytest.raises(ValueError):
        Report(action="  ", status=ReportStatus.FAILED)
