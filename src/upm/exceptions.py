"""Custom exception hierarchy for upm."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from upm.models.tasks import CircularDependency


class UpmError(Exception):
    """Base exception for all upm errors."""


class UpmConfigError(UpmError):
    """Invalid or missing configuration."""


class UpmActionError(UpmError):
    """Unknown action or action table entry."""

    def __init__(self, message: str, *, action: str = "", suggestions: list[str] | None = None) -> None:
        self.action = action
        self.suggestions = suggestions or []
        super().__init__(message)


class UpmReportError(UpmError):
    """Report file could not be read or written."""


class UpmCacheError(UpmError):
    """Build cache failure (missing input, corrupt blob, unreadable manifest)."""


class UpmJobError(UpmError):
    """Invalid job or workflow definition."""


class UpmTaskNotFoundError(UpmError, KeyError):
    """Task id is not present in the dependency graph."""

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"unknown task {task_id!r}")

    def __str__(self) -> str:
        return f"unknown task {self.task_id!r}"


class UpmCycleError(UpmError):
    """The dependency graph contains at least one cycle."""

    def __init__(self, message: str, *, cycles: list[CircularDependency] | None = None) -> None:
        self.cycles = cycles or []
        super().__init__(message)


class UpmTransportError(UpmError):
    """HTTP-level failure (network, non-2xx, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class UpmApiError(UpmError):
    """Dependency service answered with ``success: false``."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "",
        endpoint: str = "",
        status_code: int | None = None,
    ) -> None:
        self.code = code
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(message)
