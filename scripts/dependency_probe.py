#!/usr/bin/env python3
"""Live probe for a running task dependency service.

Checks, in order:
1) /health,
2) /api/system/status and /api/analytics,
3) with --round-trip: adds a throwaway dependency between two probe tasks,
   reads it back, asks for the critical path, then removes it again.

The service URL comes from --url or UPM_DEPENDENCY_SERVICE_URL.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from upm import DependencyServiceClient, UpmConfig, UpmError


@dataclass
class ProbeResult:
    checks: list[tuple[str, bool, str]] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)

    def record(self, name: str, ok: bool, detail: str = "") -> None:
        self.checks.append((name, ok, detail))
        marker = "ok  " if ok else "FAIL"
        print(f"[probe] {marker} {name}{': ' + detail if detail else ''}")

    @property
    def ok(self) -> bool:
        return all(ok for _, ok, _ in self.checks)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Probe a task dependency service.",
    )
    parser.add_argument(
        "--url",
        help="Service base URL (default: $UPM_DEPENDENCY_SERVICE_URL).",
    )
    parser.add_argument(
        "--round-trip",
        action="store_true",
        help="Add, read and remove a throwaway dependency.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the raw health/status payloads.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _dump(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def _round_trip(client: DependencyServiceClient, result: ProbeResult) -> None:
    suffix = uuid.uuid4().hex[:8]
    first, second = f"probe-{suffix}-a", f"probe-{suffix}-b"

    change = await client.add_dependencies(second, [first])
    result.record("add_dependencies", change.total_dependencies >= 1, f"{second} -> {first}")
    try:
        deps = await client.get_dependencies(second)
        result.record("get_dependencies", [d.task_id for d in deps] == [first])

        path = await client.critical_path([first, second])
        result.record("critical_path", bool(path), ", ".join(map(str, path.get("path", []))))
    finally:
        removal = await client.remove_dependencies(second)
        result.record("remove_dependencies", removal.total_dependencies == 0)


async def _probe(config: UpmConfig, args: argparse.Namespace) -> ProbeResult:
    result = ProbeResult()
    async with DependencyServiceClient(config) as client:
        health = await client.health()
        result.record("health", str(health.get("status", "")).lower() in {"ok", "healthy", "up"}, str(health.get("status")))
        if args.json:
            _dump(health)

        status = await client.system_status()
        result.record("system_status", isinstance(status, dict))
        analytics = await client.analytics()
        result.record("analytics", isinstance(analytics, dict))
        if args.json:
            _dump({"status": status, "analytics": analytics})

        if args.round_trip:
            await _round_trip(client, result)
    return result


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    config = UpmConfig.from_env()
    if args.url:
        config = dataclasses.replace(config, dependency_service_url=args.url)
    print(f"[probe] Service: {config.dependency_service_url}")

    try:
        result = asyncio.run(_probe(config, args))
    except UpmError as exc:  # pragma: no cover - network interaction
        print(f"[probe] Probe failed: {exc}", file=sys.stderr)
        return 2

    runtime = time.time() - result.started_at
    passed = sum(1 for _, ok, _ in result.checks if ok)
    print(f"[probe] Summary: {passed}/{len(result.checks)} checks passed in {runtime:.1f}s")
    return 0 if result.ok else 1


if __name__ == "__main__":
    raise SystemExit(_main())
