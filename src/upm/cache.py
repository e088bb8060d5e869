"""Content-addressed build artifact cache.

Layout under the cache root::

    objects/<sha[:2]>/<sha>   output blobs, named by sha256 of their content
    entries/<key>.json        one manifest (:class:`CacheEntry`) per build key
    stats.json                hit/miss counters

Manifests and counters are replaced atomically; blobs are immutable once
written, so a blob that no longer matches its name is corrupt.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
import tempfile
from collections.abc import Iterable, Iterator, Mapping, Sequence
from datetime import timedelta
from pathlib import Path

from pydantic import ValidationError

from upm.exceptions import UpmCacheError
from upm.models._base import utcnow
from upm.models.cache import CacheEntry, CacheStats
from upm.reports import write_json_atomic

_logger = logging.getLogger(__name__)

_CHUNK = 1024 * 1024
_KEY_VERSION = "upm-cache-v2"


def hash_file(path: Path) -> str:
    """Return the sha256 hex digest of *path*."""
    digest = hashlib.sha256()
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def iter_files(path: Path) -> Iterator[Path]:
    """Yield *path* itself, or every file below it in sorted order."""
    if path.is_dir():
        yield from sorted(p for p in path.rglob("*") if p.is_file())
    else:
        yield path


def _relative_name(path: Path, base_dir: Path) -> str | None:
    """Resolved name of *path* below *base_dir*, or None if it lies outside."""
    try:
        return path.resolve().relative_to(base_dir.resolve()).as_posix()
    except ValueError:
        return None


def _output_name(raw: Path | str, base_dir: Path) -> str:
    path = Path(raw)
    if not path.is_absolute():
        path = base_dir / path
    name = _relative_name(path, base_dir)
    if not name or name == ".":
        raise UpmCacheError(f"Build output {raw} is outside {base_dir.resolve()}")
    return name


class BuildCache:
    """Content-addressed store of build outputs keyed by command and inputs."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def objects_dir(self) -> Path:
        return self._root / "objects"

    @property
    def entries_dir(self) -> Path:
        return self._root / "entries"

    @property
    def stats_path(self) -> Path:
        return self._root / "stats.json"

    def blob_path(self, digest: str) -> Path:
        return self.objects_dir / digest[:2] / digest

    def _entry_path(self, key: str) -> Path:
        return self.entries_dir / f"{key}.json"

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def compute_key(
        self,
        command: Sequence[str],
        inputs: Iterable[Path | str],
        *,
        env: Mapping[str, str] | None = None,
        base_dir: Path | None = None,
        outputs: Iterable[Path | str] = (),
    ) -> str:
        """Derive the cache key for running *command* over *inputs*.

        Parameters
        ----------
        command : sequence of str
            Command argv; argument order matters.
        inputs : iterable of path
            Files or directories (expanded recursively). Relative paths are
            resolved against *base_dir*.
        env : mapping, optional
            Environment entries that influence the build.
        base_dir : Path, optional
            Directory input and output names are recorded relative to
            (default: the current directory). Inputs outside it are named by
            their resolved absolute path.
        outputs : iterable of path, optional
            Declared outputs; their names are part of the key.

        Raises
        ------
        UpmCacheError
            If an input does not exist or an output lies outside *base_dir*.
        """
        digest = hashlib.sha256()
        digest.update(_KEY_VERSION.encode())
        digest.update(json.dumps(list(command)).encode())
        digest.update(json.dumps(sorted((env or {}).items())).encode())
        base_dir = Path(base_dir) if base_dir is not None else Path.cwd()
        digest.update(json.dumps(sorted({_output_name(raw, base_dir) for raw in outputs})).encode())

        files: dict[str, Path] = {}
        for raw in inputs:
            path = Path(raw)
            if not path.is_absolute():
                path = base_dir / path
            if not path.exists():
                raise UpmCacheError(f"Build input does not exist: {raw}")
            for file_path in iter_files(path):
                name = _relative_name(file_path, base_dir) or file_path.resolve().as_posix()
                files[name] = file_path

        for name in sorted(files):
            digest.update(b"\0" + name.encode() + b"\0")
            digest.update(hash_file(files[name]).encode())
        return digest.hexdigest()

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def _read_entry(self, path: Path) -> CacheEntry:
        try:
            return CacheEntry.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            raise UpmCacheError(f"Unreadable cache manifest {path.name}: {exc}") from exc

    def _write_entry(self, entry: CacheEntry) -> None:
        write_json_atomic(self._entry_path(entry.key), entry.to_json_dict())

    def lookup(self, key: str) -> CacheEntry | None:
        """Return the entry for *key* and record a hit, or record a miss.

        Entries whose manifest is unreadable or whose blobs are gone are
        dropped and count as misses.
        """
        path = self._entry_path(key)
        entry: CacheEntry | None = None
        if path.is_file():
            try:
                entry = self._read_entry(path)
            except UpmCacheError as exc:
                _logger.warning("%s; discarding entry", exc)
                path.unlink(missing_ok=True)
        if entry is not None and not all(self.blob_path(d).is_file() for d in entry.outputs.values()):
            _logger.warning("Cache entry %s references missing blobs; discarding", key[:12])
            path.unlink(missing_ok=True)
            entry = None

        if entry is None:
            self._bump("misses")
            return None

        entry = entry.model_copy(update={"last_used_at": utcnow()})
        self._write_entry(entry)
        self._bump("hits")
        return entry

    def store(
        self,
        key: str,
        outputs: Iterable[Path | str],
        *,
        base_dir: Path,
        command: Sequence[str] = (),
        exit_code: int = 0,
    ) -> CacheEntry:
        """Copy *outputs* into the blob store and write the manifest for *key*.

        Output paths are recorded by their resolved name relative to
        *base_dir*, which is also where :meth:`restore` puts them back.

        Raises
        ------
        UpmCacheError
            If an output is missing or does not resolve inside *base_dir*.
        """
        base_dir = Path(base_dir).resolve()
        recorded: dict[str, str] = {}
        size = 0
        for raw in outputs:
            path = base_dir / _output_name(raw, base_dir)
            if not path.exists():
                raise UpmCacheError(f"Build output does not exist: {raw}")
            for file_path in iter_files(path):
                name = _relative_name(file_path, base_dir)
                if name is None:
                    raise UpmCacheError(f"Build output {file_path} resolves outside {base_dir}")
                recorded[name] = self._put_blob(file_path)
                size += file_path.stat().st_size

        now = utcnow()
        entry = CacheEntry(
            key=key,
            command=list(command),
            created_at=now,
            last_used_at=now,
            outputs=dict(sorted(recorded.items())),
            size_bytes=size,
            exit_code=exit_code,
        )
        self._write_entry(entry)
        _logger.debug("Stored cache entry %s (%d file(s), %d bytes)", key[:12], len(recorded), size)
        return entry

    def _put_blob(self, source: Path) -> str:
        digest = hash_file(source)
        target = self.blob_path(digest)
        if target.is_file():
            return digest
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{digest[:8]}.", suffix=".tmp", dir=target.parent)
        os.close(fd)
        try:
            shutil.copyfile(source, tmp_name)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return digest

    def restore(self, entry: CacheEntry, dest_dir: Path) -> list[Path]:
        """Write the outputs of *entry* below *dest_dir*.

        Raises
        ------
        UpmCacheError
            If a blob is missing or its content no longer matches its digest.
        """
        dest_dir = Path(dest_dir)
        restored: list[Path] = []
        for name, digest in entry.outputs.items():
            blob = self.blob_path(digest)
            try:
                data = blob.read_bytes()
            except OSError as exc:
                raise UpmCacheError(f"Missing cache blob {digest[:12]} for {name}") from exc
            if hashlib.sha256(data).hexdigest() != digest:
                raise UpmCacheError(f"Corrupt cache blob {digest[:12]} for {name}")
            target = dest_dir / name
            if _relative_name(target, dest_dir) is None:
                raise UpmCacheError(f"Cache entry {entry.key[:12]} names {name} outside {dest_dir}")
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(data)
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
            restored.append(target)
        return restored

    def entries(self) -> list[CacheEntry]:
        """All readable entries, most recently used first."""
        if not self.entries_dir.is_dir():
            return []
        result: list[CacheEntry] = []
        for path in sorted(self.entries_dir.glob("*.json")):
            try:
                result.append(self._read_entry(path))
            except UpmCacheError as exc:
                _logger.warning("%s", exc)
        return sorted(result, key=lambda e: e.last_used_at, reverse=True)

    def _blobs(self) -> list[Path]:
        if not self.objects_dir.is_dir():
            return []
        return sorted(p for p in self.objects_dir.glob("*/*") if p.is_file() and not p.name.startswith("."))

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    def _read_counters(self) -> dict[str, int]:
        try:
            data = json.loads(self.stats_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {"hits": 0, "misses": 0}
        except (OSError, json.JSONDecodeError) as exc:
            _logger.warning("Resetting unreadable cache counters: %s", exc)
            return {"hits": 0, "misses": 0}
        return {"hits": int(data.get("hits", 0)), "misses": int(data.get("misses", 0))}

    def _bump(self, counter: str) -> None:
        counters = self._read_counters()
        counters[counter] += 1
        write_json_atomic(self.stats_path, counters)

    def stats(self) -> CacheStats:
        blobs = self._blobs()
        counters = self._read_counters()
        entry_count = len(list(self.entries_dir.glob("*.json"))) if self.entries_dir.is_dir() else 0
        return CacheStats(
            entries=entry_count,
            blobs=len(blobs),
            size_bytes=sum(p.stat().st_size for p in blobs),
            hits=counters["hits"],
            misses=counters["misses"],
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def prune(self, *, max_age: float | timedelta | None = None, max_bytes: int | None = None) -> int:
        """Evict entries, least recently used first, then drop orphaned blobs.

        Parameters
        ----------
        max_age : float or timedelta, optional
            Entries unused for longer than this (seconds) are removed.
        max_bytes : int, optional
            Entries are removed until the referenced blobs fit this size.

        Returns
        -------
        int
            Number of entries removed.
        """
        if isinstance(max_age, (int, float)):
            max_age = timedelta(seconds=max_age)

        live = sorted(self.entries(), key=lambda e: e.last_used_at)
        removed = 0
        if max_age is not None:
            cutoff = utcnow() - max_age
            for entry in [e for e in live if e.last_used_at < cutoff]:
                self._entry_path(entry.key).unlink(missing_ok=True)
                live.remove(entry)
                removed += 1

        if max_bytes is not None:
            while live and self._referenced_size(live) > max_bytes:
                entry = live.pop(0)
                self._entry_path(entry.key).unlink(missing_ok=True)
                removed += 1

        orphans = self._collect_garbage(live)
        _logger.info("Pruned %d cache entr%s and %d blob(s)", removed, "y" if removed == 1 else "ies", orphans)
        return removed

    def _referenced_size(self, entries: Iterable[CacheEntry]) -> int:
        digests = {d for entry in entries for d in entry.outputs.values()}
        total = 0
        for digest in digests:
            blob = self.blob_path(digest)
            if blob.is_file():
                total += blob.stat().st_size
        return total

    def _collect_garbage(self, live: Iterable[CacheEntry]) -> int:
        referenced = {d for entry in live for d in entry.outputs.values()}
        removed = 0
        for blob in self._blobs():
            if blob.name not in referenced:
                blob.unlink(missing_ok=True)
                removed += 1
        return removed

    def clear(self) -> int:
        """Remove every entry, blob and counter; return the entry count."""
        count = len(list(self.entries_dir.glob("*.json"))) if self.entries_dir.is_dir() else 0
        for directory in (self.entries_dir, self.objects_dir):
            if directory.is_dir():
                shutil.rmtree(directory)
        self.stats_path.unlink(missing_ok=True)
        _logger.info("Cleared build cache at %s (%d entries)", self._root, count)
        return count

    def verify(self) -> list[str]:
        """Digests of blobs whose content does not match their name."""
        corrupt = [blob.name for blob in self._blobs() if hash_file(blob) != blob.name]
        for digest in corrupt:
            _logger.warning("Corrupt cache blob %s", digest)
        return corrupt
