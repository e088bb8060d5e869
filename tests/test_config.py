from __future__ import annotations

from pathlib import Path

import pytest

from upm.config import DEFAULT_SERVICE_URL, UpmConfig
from upm.exceptions import UpmConfigError

_ENV_KEYS = (
    "UPM_OUTPUT_DIR",
    "UPM_LOG_DIR",
    "UPM_LOG_LEVEL",
    "UPM_CACHE_DIR",
    "UPM_DEPENDENCY_SERVICE_URL",
    "UPM_REQUEST_TIMEOUT",
    "UPM_MAX_WORKERS",
    "UPM_JOB_TIMEOUT",
    "UPM_WRITE_REPORTS",
    "UPM_COLOR",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults() -> None:
    config = UpmConfig.from_env()
    assert config.output_dir == Path("reports")
    assert config.log_dir == Path("logs")
    assert config.cache_dir == Path(".upm-cache")
    assert config.dependency_service_url == DEFAULT_SERVICE_URL
    assert config.request_timeout == 30.0
    assert config.max_workers == 4
    assert config.job_timeout is None
    assert config.write_reports is True
    assert config.color is None


def test_from_env_reads_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("UPM_OUTPUT_DIR", "/tmp/out")
    monkeypatch.setenv("UPM_LOG_LEVEL", "debug")
    monkeypatch.setenv("UPM_DEPENDENCY_SERVICE_URL", "http://deps.local:9000/")
    monkeypatch.setenv("UPM_REQUEST_TIMEOUT", "5")
    monkeypatch.setenv("UPM_MAX_WORKERS", "8")
    monkeypatch.setenv("UPM_JOB_TIMEOUT", "12.5")
    monkeypatch.setenv("UPM_WRITE_REPORTS", "no")
    monkeypatch.setenv("UPM_COLOR", "1")

    config = UpmConfig.from_env()

    assert config.output_dir == Path("/tmp/out")
    assert config.log_level == "DEBUG"
    assert config.dependency_service_url == "http://deps.local:9000"
    assert config.request_timeout == 5.0
    assert config.max_workers == 8
    assert config.job_timeout == 12.5
    assert config.write_reports is False
    assert config.color is True


def test_overrides_win_and_none_is_ignored(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("UPM_MAX_WORKERS", "8")
    monkeypatch.setenv("UPM_LOG_DIR", "/var/log/upm")

    config = UpmConfig.from_env(max_workers=2, log_dir=None)

    assert config.max_workers == 2
    assert config.log_dir == Path("/var/log/upm")


def test_none_override_keeps_environment_flags(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("UPM_WRITE_REPORTS", "0")
    monkeypatch.setenv("UPM_MAX_WORKERS", "6")

    config = UpmConfig.from_env(write_reports=None, max_workers=None, color=None)

    assert config.write_reports is False
    assert config.max_workers == 6
    assert UpmConfig.from_env(write_reports=True).write_reports is True


def test_invalid_number_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("UPM_MAX_WORKERS", "many")
    with pytest.raises(UpmConfigError, match="UPM_MAX_WORKERS"):
        UpmConfig.from_env()


@pytest.mark.parametrize(
    "kwargs",
    [{"max_workers": 0}, {"request_timeout": 0}, {"job_timeout": -1.0}],
)
def test_validation(kwargs: dict[str, object]) -> None:
    with pytest.raises(UpmConfigError):
        UpmConfig(**kwargs)  # type: ignore[arg-type]


def test_log_file_is_daily(tmp_path: Path) -> None:
    config = UpmConfig(log_dir=tmp_path)
    assert config.log_file.parent == tmp_path
    assert config.log_file.name.startswith("upm-")
    assert config.log_file.suffix == ".log"
