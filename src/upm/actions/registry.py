"""Action registry: maps action names to async handlers and records reports."""

from __future__ import annotations

import difflib
import logging
import time
from collections.abc import Awaitable, Callable, Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from upm._redact import redact_for_log, redact_for_report
from upm.cache import BuildCache
from upm.config import UpmConfig
from upm.exceptions import UpmActionError
from upm.models._base import utcnow
from upm.models.report import Report, ReportStatus
from upm.reports import ReportWriter

_logger = logging.getLogger(__name__)

Handler = Callable[["ActionContext", dict[str, Any]], Awaitable[Any]]


@dataclass
class ActionContext:
    """Shared resources handed to every action handler."""

    config: UpmConfig
    writer: ReportWriter
    cache: BuildCache
    write_reports: bool = True
    last_report_path: Path | None = field(default=None, compare=False)

    @classmethod
    def from_config(cls, config: UpmConfig) -> ActionContext:
        return cls(
            config=config,
            writer=ReportWriter(config.output_dir),
            cache=BuildCache(config.cache_dir),
            write_reports=config.write_reports,
        )


@dataclass(frozen=True)
class ActionSpec:
    name: str
    handler: Handler
    help: str = ""
    aliases: tuple[str, ...] = ()


def _normalize(name: str) -> str:
    return name.strip().lower().replace("_", "-")


def _as_data(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, BaseModel):
        dump = getattr(value, "to_json_dict", None)
        return dump() if dump is not None else value.model_dump(mode="json", by_alias=True)
    if isinstance(value, Mapping):
        return dict(value)
    return {"result": value}


def _first_line(doc: str | None) -> str:
    lines = (doc or "").strip().splitlines()
    return lines[0].strip() if lines else ""


def _upm_version() -> str:
    from upm import __version__

    return __version__


class ActionRegistry:
    """Name -> handler table behind ``upm run ACTION``.

    Names and aliases are matched case-insensitively, with ``_`` and ``-``
    treated alike.
    """

    def __init__(self) -> None:
        self._actions: dict[str, ActionSpec] = {}
        self._aliases: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: Handler,
        help: str = "",
        aliases: tuple[str, ...] | list[str] = (),
    ) -> ActionSpec:
        """Register *handler* under *name*.

        Raises
        ------
        ValueError
            If the name or one of the aliases is already taken.
        """
        key = _normalize(name)
        if not key:
            raise ValueError("action name must be non-empty")
        taken = [n for n in (key, *map(_normalize, aliases)) if n in self._actions or n in self._aliases]
        if taken:
            raise ValueError(f"action name already registered: {', '.join(taken)}")
        spec = ActionSpec(name=key, handler=handler, help=help, aliases=tuple(_normalize(a) for a in aliases))
        self._actions[key] = spec
        for alias in spec.aliases:
            self._aliases[alias] = key
        return spec

    def action(
        self,
        name: str,
        *,
        help: str = "",
        aliases: tuple[str, ...] | list[str] = (),
    ) -> Callable[[Handler], Handler]:
        """Decorator form of :meth:`register`."""

        def decorator(handler: Handler) -> Handler:
            self.register(name, handler, help=help or _first_line(handler.__doc__), aliases=aliases)
            return handler

        return decorator

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        key = _normalize(name)
        return key in self._actions or key in self._aliases

    def __iter__(self) -> Iterator[ActionSpec]:
        return iter(self.specs())

    def __len__(self) -> int:
        return len(self._actions)

    def specs(self) -> list[ActionSpec]:
        return [self._actions[name] for name in sorted(self._actions)]

    @property
    def names(self) -> list[str]:
        return sorted(self._actions)

    def resolve(self, name: str) -> ActionSpec:
        """Return the spec for *name* or an alias of it.

        Raises
        ------
        UpmActionError
            If nothing matches; ``suggestions`` lists close names.
        """
        key = _normalize(name)
        key = self._aliases.get(key, key)
        spec = self._actions.get(key)
        if spec is not None:
            return spec
        candidates = [*self._actions, *self._aliases]
        suggestions = difflib.get_close_matches(key, candidates, n=3, cutoff=0.6)
        message = f"Unknown action {name!r}"
        if suggestions:
            message += f"; did you mean: {', '.join(suggestions)}?"
        raise UpmActionError(message, action=name, suggestions=suggestions)

    async def dispatch(self, name: str, params: Mapping[str, Any], ctx: ActionContext) -> Report:
        """Run the handler for *name* and return its report.

        Handler exceptions are logged and recorded as a ``failed`` report;
        only an unknown *name* raises. The report is written through
        ``ctx.writer`` when ``ctx.write_reports`` is set.
        """
        spec = self.resolve(name)
        safe_params = redact_for_report(params)
        _logger.info("Running action %s", spec.name)
        _logger.debug("Action %s parameters: %s", spec.name, redact_for_log(safe_params))

        started_at = utcnow()
        started = time.monotonic()
        data: dict[str, Any] = {}
        error: str | None = None
        try:
            data = _as_data(await spec.handler(ctx, dict(params)))
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            _logger.error("Action %s failed: %s", spec.name, error)
            _logger.debug("Action %s traceback", spec.name, exc_info=True)
        duration = time.monotonic() - started

        report = Report(
            action=spec.name,
            status=ReportStatus.FAILED if error is not None else ReportStatus.SUCCESS,
            started_at=started_at,
            finished_at=utcnow(),
            duration_seconds=duration,
            parameters=safe_params,
            data=data,
            error=error,
            version=_upm_version(),
        )
        if error is None:
            _logger.info("Action %s completed in %.2fs", spec.name, duration)

        ctx.last_report_path = None
        if ctx.write_reports:
            ctx.last_report_path = ctx.writer.write(report)
            _logger.info("Report saved to %s", ctx.last_report_path)
        return report
