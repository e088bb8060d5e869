"""Runtime configuration for upm."""

from __future__ import annotations

import dataclasses
import os
from datetime import datetime
from pathlib import Path
from typing import Any

from upm.exceptions import UpmConfigError

DEFAULT_SERVICE_URL = "http://localhost:3022"


def _env_bool(value: str | None, default: bool | None) -> bool | None:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env_key: str, value: str, kind: type) -> Any:
    try:
        return kind(value)
    except ValueError as exc:
        raise UpmConfigError(f"{env_key} must be a {kind.__name__}, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class UpmConfig:
    """Toolkit configuration.

    Parameters
    ----------
    output_dir : Path
        Directory JSON reports are written to.
    log_dir : Path
        Directory holding the daily ``upm-YYYYMMDD.log`` files.
    log_level : str
        Logging level name for the ``upm`` logger.
    cache_dir : Path
        Root of the content-addressed build cache.
    dependency_service_url : str
        Base URL of the task dependency service.
    request_timeout : float
        Total timeout in seconds for one HTTP request to the service.
    max_workers : int
        Upper bound on concurrently running orchestrator jobs.
    job_timeout : float or None
        Default per-job timeout in seconds. ``None`` disables it.
    write_reports : bool
        Write a JSON report for every dispatched action.
    color : bool or None
        Force coloured console output on/off. ``None`` auto-detects a TTY.
    """

    output_dir: Path = Path("reports")
    log_dir: Path = Path("logs")
    log_level: str = "INFO"
    cache_dir: Path = Path(".upm-cache")
    dependency_service_url: str = DEFAULT_SERVICE_URL
    request_timeout: float = 30.0
    max_workers: int = 4
    job_timeout: float | None = None
    write_reports: bool = True
    color: bool | None = None

    def __post_init__(self) -> None:
        for name in ("output_dir", "log_dir", "cache_dir"):
            value = getattr(self, name)
            if not isinstance(value, Path):
                object.__setattr__(self, name, Path(value))
        object.__setattr__(self, "dependency_service_url", self.dependency_service_url.rstrip("/"))
        object.__setattr__(self, "log_level", str(self.log_level).upper())
        if self.max_workers < 1:
            raise UpmConfigError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.request_timeout <= 0:
            raise UpmConfigError(f"request_timeout must be > 0, got {self.request_timeout}")
        if self.job_timeout is not None and self.job_timeout <= 0:
            raise UpmConfigError(f"job_timeout must be > 0, got {self.job_timeout}")

    @property
    def log_file(self) -> Path:
        """Log file for today."""
        return self.log_dir / f"upm-{datetime.now():%Y%m%d}.log"

    @classmethod
    def from_env(cls, **overrides: Any) -> UpmConfig:
        """Create configuration from ``UPM_*`` environment variables.

        Explicit keyword arguments take precedence over the environment.

        Raises
        ------
        UpmConfigError
            If a numeric variable cannot be parsed.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}
        # None means "not given" (argparse defaults)
        overrides = {k: v for k, v in overrides.items() if v is not None}

        _ENV_STR_MAP = {
            "UPM_OUTPUT_DIR": "output_dir",
            "UPM_LOG_DIR": "log_dir",
            "UPM_LOG_LEVEL": "log_level",
            "UPM_CACHE_DIR": "cache_dir",
            "UPM_DEPENDENCY_SERVICE_URL": "dependency_service_url",
        }
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        timeout_env = env.get("UPM_REQUEST_TIMEOUT")
        if timeout_env is not None and "request_timeout" not in overrides:
            config_kwargs["request_timeout"] = _env_number("UPM_REQUEST_TIMEOUT", timeout_env, float)

        workers_env = env.get("UPM_MAX_WORKERS")
        if workers_env is not None and "max_workers" not in overrides:
            config_kwargs["max_workers"] = _env_number("UPM_MAX_WORKERS", workers_env, int)

        job_timeout_env = env.get("UPM_JOB_TIMEOUT")
        if job_timeout_env and "job_timeout" not in overrides:
            config_kwargs["job_timeout"] = _env_number("UPM_JOB_TIMEOUT", job_timeout_env, float)

        if "write_reports" not in overrides:
            config_kwargs["write_reports"] = _env_bool(env.get("UPM_WRITE_REPORTS"), True)

        if "color" not in overrides:
            config_kwargs["color"] = _env_bool(env.get("UPM_COLOR"), None)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
