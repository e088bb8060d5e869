"""Report envelope written for every dispatched action."""

from __future__ import annotations

import enum
import platform
from datetime import datetime
from typing import Any

from pydantic import Field, field_validator

from upm.models._base import UpmBaseModel, utcnow


class ReportStatus(enum.StrEnum):
    SUCCESS = "success"
    FAILED = "failed"


class Report(UpmBaseModel):
    """Result of one action run.

    Parameters
    ----------
    action : str
        Canonical action name.
    status : ReportStatus
        ``success`` when the handler returned, ``failed`` when it raised.
    started_at, finished_at : datetime
        UTC timestamps around the handler call.
    duration_seconds : float
        Wall-clock duration of the handler.
    parameters : dict
        Parameters the action was called with (redacted).
    data : dict
        Whatever the handler returned.
    error : str or None
        Exception message for failed runs.
    host : str
        Node name the action ran on.
    version : str
        upm version that produced the report.
    """

    action: str
    status: ReportStatus
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime = Field(default_factory=utcnow)
    duration_seconds: float = Field(default=0.0, ge=0)
    parameters: dict[str, Any] = Field(default_factory=dict)
    data: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    host: str = Field(default_factory=platform.node)
    version: str = ""

    @field_validator("action")
    @classmethod
    def _action_non_empty(cls, value: str) -> str:
        action = value.strip()
        if not action:
            raise ValueError("action must be non-empty")
        return action

    @property
    def ok(self) -> bool:
        return self.status == ReportStatus.SUCCESS
