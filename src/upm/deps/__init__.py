"""Task dependency engine.

:class:`DependencyGraph` owns tasks and edges; :mod:`upm.deps.analysis`
computes cycles, ordering, critical path, impact and conflicts from it.
"""

from upm.deps.analysis import (
    analyze,
    analyze_impact,
    critical_path,
    detect_conflicts,
    detect_cycles,
    redundant_dependencies,
    to_dot,
    topological_order,
)
from upm.deps.graph import DependencyGraph


def parse_task_ids(value: str | None) -> list[str]:
    """Split a comma-separated id list, trimming blanks and duplicates."""
    if not value:
        return []
    return list(dict.fromkeys(item.strip() for item in value.split(",") if item.strip()))


__all__ = [
    "DependencyGraph",
    "analyze",
    "analyze_impact",
    "critical_path",
    "detect_conflicts",
    "detect_cycles",
    "parse_task_ids",
    "redundant_dependencies",
    "to_dot",
    "topological_order",
]
