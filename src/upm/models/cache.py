"""Build cache manifest and result models."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from upm.models._base import UpmBaseModel, utcnow


class CacheEntry(UpmBaseModel):
    """Manifest of one cached build: output paths mapped to blob digests."""

    key: str
    command: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    last_used_at: datetime = Field(default_factory=utcnow)
    outputs: dict[str, str] = Field(default_factory=dict)
    size_bytes: int = 0
    exit_code: int = 0


class CacheStats(UpmBaseModel):
    entries: int = 0
    blobs: int = 0
    size_bytes: int = 0
    hits: int = 0
    misses: int = 0

    @property
    def hit_rate(self) -> float | None:
        lookups = self.hits + self.misses
        if lookups == 0:
            return None
        return self.hits / lookups


class BuildResult(UpmBaseModel):
    key: str
    cached: bool
    exit_code: int
    outputs: list[str] = Field(default_factory=list)
    duration_seconds: float = 0.0
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0
