"""JSON report files: atomic writes, listing and reading back."""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path

from pydantic import ValidationError

from upm.exceptions import UpmReportError
from upm.models.report import Report

_logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"[^a-z0-9]+")
_STAMP_RE = re.compile(r"-\d{8}-\d{6}-\d{6}\.json\Z")


def slugify(name: str) -> str:
    """Lowercase *name* and collapse anything non-alphanumeric to ``-``."""
    slug = _SLUG_RE.sub("-", name.strip().lower()).strip("-")
    return slug or "report"


def write_json_atomic(path: Path, payload: object) -> None:
    """Write *payload* as indented JSON, replacing *path* atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, ensure_ascii=False)
            handle.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _action_slug(filename: str) -> str | None:
    match = _STAMP_RE.search(filename)
    return filename[: match.start()] if match else None


class ReportWriter:
    """Writes one ``<action>-<timestamp>.json`` file per report."""

    def __init__(self, output_dir: Path) -> None:
        self._output_dir = Path(output_dir)

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    def path_for(self, report: Report) -> Path:
        stamp = report.started_at.strftime("%Y%m%d-%H%M%S-%f")
        return self._output_dir / f"{slugify(report.action)}-{stamp}.json"

    def write(self, report: Report) -> Path:
        path = self.path_for(report)
        try:
            write_json_atomic(path, report.to_json_dict())
        except OSError as exc:
            raise UpmReportError(f"Could not write report {path}: {exc}") from exc
        _logger.debug("Report written to %s", path)
        return path

    def list_reports(self, action: str | None = None) -> list[Path]:
        """Report files, newest first; optionally only those of *action*."""
        if not self._output_dir.is_dir():
            return []
        paths = [p for p in self._output_dir.glob("*.json") if p.is_file()]
        if action:
            slug = slugify(action)
            paths = [p for p in paths if _action_slug(p.name) == slug]
        # The timestamp suffix sorts lexically; mtime breaks ties across actions.
        return sorted(paths, key=lambda p: (p.stat().st_mtime, p.name), reverse=True)

    def read(self, path: Path) -> Report:
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise UpmReportError(f"Could not read report {path}: {exc}") from exc
        try:
            return Report.model_validate_json(text)
        except ValidationError as exc:
            raise UpmReportError(f"Invalid report {path}: {exc.error_count()} validation error(s)") from exc

    def latest(self, action: str) -> Report | None:
        paths = self.list_reports(action)
        if not paths:
            return None
        return self.read(paths[0])
