"""Deterministic in-memory task dependency graph.

This is the only component allowed to mutate dependency edges. Analyses in
:mod:`upm.deps.analysis` read it through the public accessors.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from upm.exceptions import UpmCycleError, UpmError, UpmTaskNotFoundError
from upm.models.tasks import (
    CircularDependency,
    Dependency,
    DependencyChange,
    DependencyRemoval,
    Task,
)
from upm.reports import write_json_atomic

_logger = logging.getLogger(__name__)


class DependencyGraph:
    """Tasks plus, per task, the ordered list of its prerequisites.

    Edges are kept in both directions: ``_dependencies[task]`` holds the
    :class:`Dependency` records (task -> prerequisite) and ``_dependents``
    the reverse adjacency (prerequisite -> tasks waiting on it).
    """

    def __init__(self, tasks: Iterable[Task] = ()) -> None:
        self._tasks: dict[str, Task] = {}
        self._dependencies: dict[str, list[Dependency]] = {}
        self._dependents: dict[str, set[str]] = {}
        for task in tasks:
            self.add_task(task)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def add_task(self, task: Task) -> Task:
        """Insert or replace *task*; replacing keeps its edges."""
        self._tasks[task.id] = task
        self._dependencies.setdefault(task.id, [])
        self._dependents.setdefault(task.id, set())
        return task

    def _ensure_task(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            task = self.add_task(Task(id=task_id, name=task_id, placeholder=True))
        return task

    def get_task(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def require_task(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise UpmTaskNotFoundError(task_id)
        return task

    @property
    def tasks(self) -> list[Task]:
        return [self._tasks[task_id] for task_id in sorted(self._tasks)]

    @property
    def task_ids(self) -> list[str]:
        return sorted(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def remove_task(self, task_id: str) -> None:
        """Remove *task_id* and every edge touching it."""
        self.require_task(task_id)
        for dep in self._dependencies.pop(task_id, []):
            self._dependents.get(dep.task_id, set()).discard(task_id)
        for dependent in self._dependents.pop(task_id, set()):
            self._dependencies[dependent] = [d for d in self._dependencies[dependent] if d.task_id != task_id]
        del self._tasks[task_id]

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def edge_count(self) -> int:
        return sum(len(deps) for deps in self._dependencies.values())

    def edges(self) -> list[tuple[str, Dependency]]:
        """All ``(task, dependency)`` pairs in task id order."""
        return [(task_id, dep) for task_id in sorted(self._dependencies) for dep in self._dependencies[task_id]]

    def add_dependencies(
        self,
        task_id: str,
        dependencies: Iterable[Dependency],
        *,
        strict: bool = False,
    ) -> DependencyChange:
        """Add prerequisites to *task_id*.

        Unknown tasks on either end are registered as placeholders. An edge
        to a prerequisite that already exists is replaced in place.

        Raises
        ------
        ValueError
            If a task is made to depend on itself.
        UpmCycleError
            With ``strict=True`` when the change would introduce a cycle;
            the graph is left unchanged.
        """
        incoming = [dep.for_task(task_id) for dep in dependencies]
        for dep in incoming:
            if dep.task_id == task_id:
                raise ValueError(f"task {task_id!r} cannot depend on itself")

        snapshot = self._snapshot() if strict else None
        self._ensure_task(task_id)
        current = self._dependencies[task_id]
        new_dependencies: list[Dependency] = []

        for dep in incoming:
            self._ensure_task(dep.task_id)
            index = next((i for i, existing in enumerate(current) if existing.task_id == dep.task_id), None)
            if index is not None:
                current[index] = dep.model_copy(update={"id": current[index].id, "created_at": current[index].created_at})
                continue
            current.append(dep)
            new_dependencies.append(dep)
            self._dependents[dep.task_id].add(task_id)

        cycles = self.cycles_through(task_id)
        if cycles:
            if snapshot is not None:
                self._restore(snapshot)
                raise UpmCycleError(
                    f"adding dependencies to {task_id!r} creates {len(cycles)} cycle(s): "
                    + "; ".join(" -> ".join(c.cycle) for c in cycles),
                    cycles=cycles,
                )
            _logger.warning(
                "Circular dependencies detected for task %s: %s",
                task_id,
                "; ".join(" -> ".join(c.cycle) for c in cycles),
            )

        return DependencyChange(
            task_id=task_id,
            dependencies=list(current),
            new_dependencies=new_dependencies,
            total_dependencies=len(current),
        )

    def get_dependencies(self, task_id: str, *, transitive: bool = False) -> list[Dependency]:
        """Direct prerequisites of *task_id*, or all reachable ones."""
        direct = list(self._dependencies.get(task_id, []))
        if not transitive:
            return direct
        result: list[Dependency] = []
        seen: set[str] = {task_id}
        stack = list(reversed(direct))
        while stack:
            dep = stack.pop()
            if dep.task_id in seen:
                continue
            seen.add(dep.task_id)
            result.append(dep)
            stack.extend(reversed(self._dependencies.get(dep.task_id, [])))
        return result

    def prerequisite_ids(self, task_id: str) -> list[str]:
        return [dep.task_id for dep in self._dependencies.get(task_id, [])]

    def dependents(self, task_id: str, *, transitive: bool = False) -> list[str]:
        """Tasks that depend on *task_id* (sorted), optionally transitively."""
        direct = sorted(self._dependents.get(task_id, set()))
        if not transitive:
            return direct
        seen: set[str] = set()
        order: list[str] = []
        queue = list(direct)
        while queue:
            current = queue.pop(0)
            if current in seen or current == task_id:
                continue
            seen.add(current)
            order.append(current)
            queue.extend(sorted(self._dependents.get(current, set())))
        return order

    def update_dependencies(self, task_id: str, dependencies: Iterable[Dependency], *, strict: bool = False) -> DependencyChange:
        """Replace every prerequisite of *task_id* with *dependencies*."""
        snapshot = self._snapshot()
        self.remove_all_dependencies(task_id)
        try:
            return self.add_dependencies(task_id, dependencies, strict=strict)
        except (UpmCycleError, ValueError):
            self._restore(snapshot)
            raise

    def remove_dependencies(self, task_id: str, dependency_ids: Iterable[str]) -> DependencyRemoval:
        """Remove the edges of *task_id* whose id (or prerequisite id) is listed."""
        wanted = set(dependency_ids)
        removed: list[Dependency] = []
        remaining: list[Dependency] = []
        for dep in self._dependencies.get(task_id, []):
            if dep.id in wanted or dep.task_id in wanted:
                removed.append(dep)
                self._dependents.get(dep.task_id, set()).discard(task_id)
            else:
                remaining.append(dep)
        if task_id in self._dependencies:
            self._dependencies[task_id] = remaining
        return DependencyRemoval(
            task_id=task_id,
            removed_dependencies=removed,
            remaining_dependencies=remaining,
            total_dependencies=len(remaining),
        )

    def remove_all_dependencies(self, task_id: str) -> DependencyRemoval:
        ids = [dep.id for dep in self._dependencies.get(task_id, [])]
        return self.remove_dependencies(task_id, ids)

    # ------------------------------------------------------------------
    # Cycle detection
    # ------------------------------------------------------------------

    def cycles_through(self, task_id: str) -> list[CircularDependency]:
        """Cycles reachable from *task_id* (used after each mutation)."""
        from upm.deps.analysis import detect_cycles

        return [cycle for cycle in detect_cycles(self, [task_id]) if task_id in cycle.members]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _snapshot(self) -> dict[str, Any]:
        return {
            "tasks": dict(self._tasks),
            "dependencies": {k: list(v) for k, v in self._dependencies.items()},
            "dependents": {k: set(v) for k, v in self._dependents.items()},
        }

    def _restore(self, snapshot: dict[str, Any]) -> None:
        self._tasks = snapshot["tasks"]
        self._dependencies = snapshot["dependencies"]
        self._dependents = snapshot["dependents"]

    def copy(self) -> DependencyGraph:
        clone = type(self)()
        clone._restore(self._snapshot())
        return clone

    def subgraph(self, task_ids: Iterable[str]) -> DependencyGraph:
        """Graph induced by *task_ids*; unknown ids are ignored."""
        keep = {task_id for task_id in task_ids if task_id in self._tasks}
        sub = type(self)(self._tasks[task_id] for task_id in sorted(keep))
        for task_id in sorted(keep):
            deps = [dep for dep in self._dependencies[task_id] if dep.task_id in keep]
            sub._dependencies[task_id] = list(deps)
            for dep in deps:
                sub._dependents[dep.task_id].add(task_id)
        return sub

    def to_dict(self) -> dict[str, Any]:
        return {
            "tasks": [task.to_json_dict() for task in self.tasks],
            "dependencies": {
                task_id: [dep.to_json_dict() for dep in deps]
                for task_id, deps in sorted(self._dependencies.items())
                if deps
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DependencyGraph:
        """Build a graph from the task-file layout.

        Cycles are accepted here (they are a finding of the analysis, not a
        load error).
        """
        try:
            graph = cls(Task.model_validate(item) for item in data.get("tasks", []))
            for task_id, deps in (data.get("dependencies") or {}).items():
                graph.add_dependencies(task_id, [_coerce_dependency(item) for item in deps])
        except ValidationError as exc:
            raise UpmError(f"Invalid task data: {exc.error_count()} validation error(s)") from exc
        return graph

    @classmethod
    def load(cls, path: Path) -> DependencyGraph:
        path = Path(path)
        if not path.exists():
            return cls()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise UpmError(f"Could not read task file {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise UpmError(f"Task file {path} must contain a JSON object")
        return cls.from_dict(data)

    def save(self, path: Path) -> None:
        write_json_atomic(Path(path), self.to_dict())


def _coerce_dependency(item: Any) -> Dependency:
    # Shorthand: a bare string is a finish-to-start edge to that task.
    if isinstance(item, str):
        return Dependency(task_id=item)
    return Dependency.model_validate(item)
