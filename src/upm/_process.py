"""Subprocess execution shared by the orchestrator and the build cache."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

_logger = logging.getLogger(__name__)

MAX_OUTPUT_BYTES = 64 * 1024


@dataclass(frozen=True, slots=True)
class ProcessOutcome:
    return_code: int
    output: str


def truncate_output(raw: bytes, limit: int = MAX_OUTPUT_BYTES) -> str:
    """Decode combined output, keeping only the last *limit* bytes."""
    if len(raw) > limit:
        dropped = len(raw) - limit
        return f"[... {dropped} bytes truncated ...]\n" + raw[-limit:].decode("utf-8", errors="replace")
    return raw.decode("utf-8", errors="replace")


async def run_process(
    argv: Sequence[str],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> ProcessOutcome:
    """Run *argv* and capture stdout and stderr combined.

    *env* is merged over the current environment.

    Raises
    ------
    TimeoutError
        The process outlived *timeout*; it has been killed and reaped.
    OSError
        The executable could not be started.
    """
    if not argv:
        raise ValueError("command must not be empty")
    merged_env = {**os.environ, **env} if env else None
    _logger.debug("Starting %s (cwd=%s)", list(argv), cwd)
    proc = await asyncio.create_subprocess_exec(
        *argv,
        cwd=str(cwd) if cwd is not None else None,
        env=merged_env,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout)
    except BaseException:
        # Timeout or cancellation: never leave the child running.
        if proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
        raise
    assert proc.returncode is not None  # noqa: S101
    return ProcessOutcome(return_code=proc.returncode, output=truncate_output(stdout or b""))
