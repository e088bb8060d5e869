"""Run build commands through the content-addressed cache."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from pathlib import Path

from upm._process import run_process
from upm.cache import BuildCache
from upm.exceptions import UpmCacheError
from upm.models.cache import BuildResult

_logger = logging.getLogger(__name__)


class CachedBuild:
    """Skip a command when its inputs are unchanged since a successful run."""

    def __init__(self, cache: BuildCache) -> None:
        self._cache = cache

    @property
    def cache(self) -> BuildCache:
        return self._cache

    async def run(
        self,
        command: Sequence[str],
        inputs: Sequence[Path | str],
        outputs: Sequence[Path | str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> BuildResult:
        """Restore *outputs* from the cache, or run *command* and cache them.

        Only runs that exit 0 and produce every declared output are stored.

        Raises
        ------
        UpmCacheError
            An input is missing or a cached blob is corrupt.
        TimeoutError
            The command exceeded *timeout*.
        """
        base_dir = Path(cwd) if cwd is not None else Path.cwd()
        started = time.monotonic()
        key = self._cache.compute_key(command, inputs, env=env, base_dir=base_dir, outputs=outputs)

        entry = self._cache.lookup(key)
        if entry is not None:
            self._cache.restore(entry, base_dir)
            _logger.info("Cache hit %s: restored %d output(s)", key[:12], len(entry.outputs))
            return BuildResult(
                key=key,
                cached=True,
                exit_code=entry.exit_code,
                outputs=list(entry.outputs),
                duration_seconds=time.monotonic() - started,
            )

        _logger.info("Cache miss %s: running %s", key[:12], " ".join(command))
        outcome = await run_process(command, cwd=base_dir, env=env, timeout=timeout)
        stored: list[str] = []
        if outcome.return_code == 0:
            try:
                entry = self._cache.store(key, outputs, base_dir=base_dir, command=command)
            except UpmCacheError as exc:
                _logger.warning("Not caching build %s: %s", key[:12], exc)
            else:
                stored = list(entry.outputs)
        else:
            _logger.warning("Build command exited with %d; result not cached", outcome.return_code)

        return BuildResult(
            key=key,
            cached=False,
            exit_code=outcome.return_code,
            outputs=stored,
            duration_seconds=time.monotonic() - started,
            output=outcome.output,
        )
