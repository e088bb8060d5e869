"""Read-only analyses over a :class:`~upm.deps.graph.DependencyGraph`.

Cycle detection, topological ordering, critical path (CPM), change impact,
conflict detection, redundant-edge detection and Graphviz export. None of
these functions mutate the graph they are given.
"""

from __future__ import annotations

import heapq
import logging
from collections import deque
from collections.abc import Iterable
from typing import TYPE_CHECKING

from upm.exceptions import UpmCycleError
from upm.models.tasks import (
    ChangeType,
    CircularDependency,
    Conflict,
    ConflictType,
    CriticalPathResult,
    Dependency,
    DependencyAnalysis,
    DependencyType,
    ImpactLevel,
    ImpactReport,
    RedundantDependency,
    RiskFactor,
    ScheduledTask,
    Severity,
    Task,
    TaskStatus,
)

if TYPE_CHECKING:
    from upm.deps.graph import DependencyGraph

_logger = logging.getLogger(__name__)

_EPSILON = 1e-9
_DONE = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED})
_STARTED = frozenset({TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED})

# Impact scoring: delay (hours) / affected task count / high-risk count caps.
_DELAY_SCALE = 40.0
_AFFECTED_SCALE = 10.0
_RISK_SCALE = 5.0
_IMPACT_THRESHOLDS: tuple[tuple[float, ImpactLevel], ...] = (
    (0.8, ImpactLevel.CRITICAL),
    (0.5, ImpactLevel.HIGH),
    (0.3, ImpactLevel.MEDIUM),
)


def _scope(graph: DependencyGraph, task_ids: Iterable[str] | None) -> DependencyGraph:
    if task_ids is None:
        return graph
    return graph.subgraph(task_ids)


def effective_duration(task: Task) -> float:
    """Remaining work: finished or cancelled tasks no longer take time."""
    if task.status in _DONE:
        return 0.0
    return task.duration


# ----------------------------------------------------------------------
# Cycles and ordering
# ----------------------------------------------------------------------


def _cycle_key(members: list[str]) -> tuple[str, ...]:
    pivot = members.index(min(members))
    return tuple(members[pivot:] + members[:pivot])


def detect_cycles(graph: DependencyGraph, task_ids: Iterable[str] | None = None) -> list[CircularDependency]:
    """Find dependency cycles with an iterative depth-first search.

    Starts from *task_ids* (default: every task, in id order) and follows
    task -> prerequisite edges. Each distinct cycle is reported once, as a
    closed path starting at the task where the back edge was found first.
    """
    starts = list(dict.fromkeys(task_ids)) if task_ids is not None else graph.task_ids
    visited: set[str] = set()
    found: list[CircularDependency] = []
    seen_keys: set[tuple[str, ...]] = set()

    for start in starts:
        if start in visited or start not in graph:
            continue
        visited.add(start)
        path = [start]
        on_path = {start}
        stack = [iter(graph.prerequisite_ids(start))]
        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                stack.pop()
                on_path.discard(path.pop())
                continue
            if nxt in on_path:
                cycle = path[path.index(nxt) :] + [nxt]
                key = _cycle_key(cycle[:-1])
                if key not in seen_keys:
                    seen_keys.add(key)
                    found.append(CircularDependency(cycle=cycle, task_id=path[-1], dependency_task_id=nxt))
                continue
            if nxt in visited:
                continue
            visited.add(nxt)
            path.append(nxt)
            on_path.add(nxt)
            stack.append(iter(graph.prerequisite_ids(nxt)))
    return found


def topological_order(graph: DependencyGraph) -> list[str]:
    """Prerequisites before dependents; ties broken by task id.

    Raises
    ------
    UpmCycleError
        If the graph has a cycle.
    """
    remaining = {task_id: len(graph.prerequisite_ids(task_id)) for task_id in graph.task_ids}
    ready = [task_id for task_id, count in remaining.items() if count == 0]
    heapq.heapify(ready)
    order: list[str] = []
    while ready:
        task_id = heapq.heappop(ready)
        order.append(task_id)
        for dependent in graph.dependents(task_id):
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                heapq.heappush(ready, dependent)
    if len(order) != len(remaining):
        cycles = detect_cycles(graph)
        raise UpmCycleError(
            f"dependency graph has {len(cycles)} cycle(s): " + "; ".join(" -> ".join(c.cycle) for c in cycles),
            cycles=cycles,
        )
    return order


# ----------------------------------------------------------------------
# Critical path
# ----------------------------------------------------------------------


def _edges_into(graph: DependencyGraph, task_id: str, prerequisite: str) -> list[Dependency]:
    return [dep for dep in graph.get_dependencies(task_id) if dep.task_id == prerequisite]


def _drives(dep: Dependency, pred: ScheduledTask, succ: ScheduledTask) -> bool:
    if dep.type == DependencyType.START_TO_START:
        return abs(pred.earliest_start + dep.lag - succ.earliest_start) < _EPSILON
    if dep.type == DependencyType.FINISH_TO_FINISH:
        return abs(pred.earliest_finish + dep.lag - succ.earliest_finish) < _EPSILON
    return abs(pred.earliest_finish + dep.lag - succ.earliest_start) < _EPSILON


def critical_path(graph: DependencyGraph, task_ids: Iterable[str] | None = None) -> CriticalPathResult:
    """Critical path method over the (optionally restricted) graph.

    Forward pass for earliest start/finish honouring dependency type and
    lag, backward pass for latest start/finish; tasks with zero slack are
    critical. ``path`` follows driving critical edges back from the critical
    task that finishes last.
    """
    scoped = _scope(graph, task_ids)
    if not len(scoped):
        return CriticalPathResult()
    order = topological_order(scoped)
    durations = {task_id: effective_duration(scoped.require_task(task_id)) for task_id in order}

    earliest_start: dict[str, float] = {}
    earliest_finish: dict[str, float] = {}
    for task_id in order:
        duration = durations[task_id]
        start = 0.0
        for dep in scoped.get_dependencies(task_id):
            if dep.type == DependencyType.START_TO_START:
                start = max(start, earliest_start[dep.task_id] + dep.lag)
            elif dep.type == DependencyType.FINISH_TO_FINISH:
                start = max(start, earliest_finish[dep.task_id] + dep.lag - duration)
            else:
                start = max(start, earliest_finish[dep.task_id] + dep.lag)
        earliest_start[task_id] = start
        earliest_finish[task_id] = start + duration

    total = max(earliest_finish.values())

    latest_start: dict[str, float] = {}
    latest_finish: dict[str, float] = {}
    for task_id in reversed(order):
        duration = durations[task_id]
        finish = total
        for dependent in scoped.dependents(task_id):
            for dep in _edges_into(scoped, dependent, task_id):
                if dep.type == DependencyType.START_TO_START:
                    finish = min(finish, latest_start[dependent] - dep.lag + duration)
                elif dep.type == DependencyType.FINISH_TO_FINISH:
                    finish = min(finish, latest_finish[dependent] - dep.lag)
                else:
                    finish = min(finish, latest_start[dependent] - dep.lag)
        latest_finish[task_id] = finish
        latest_start[task_id] = finish - duration

    schedule: dict[str, ScheduledTask] = {}
    for task_id in order:
        slack = latest_start[task_id] - earliest_start[task_id]
        schedule[task_id] = ScheduledTask(
            task_id=task_id,
            duration=durations[task_id],
            earliest_start=earliest_start[task_id],
            earliest_finish=earliest_finish[task_id],
            latest_start=latest_start[task_id],
            latest_finish=latest_finish[task_id],
            slack=0.0 if abs(slack) < _EPSILON else slack,
            critical=abs(slack) < _EPSILON,
        )

    critical_tasks = [task_id for task_id in order if schedule[task_id].critical]
    end_candidates = [task_id for task_id in critical_tasks if abs(earliest_finish[task_id] - total) < _EPSILON]
    path: list[str] = []
    current = min(end_candidates) if end_candidates else None
    while current is not None:
        path.append(current)
        driver = None
        for dep in sorted(scoped.get_dependencies(current), key=lambda d: d.task_id):
            pred = schedule[dep.task_id]
            if pred.critical and dep.task_id not in path and _drives(dep, pred, schedule[current]):
                driver = dep.task_id
                break
        current = driver
    path.reverse()

    return CriticalPathResult(
        path=path,
        total_duration=total,
        schedule=schedule,
        critical_tasks=critical_tasks,
    )


# ----------------------------------------------------------------------
# Impact
# ----------------------------------------------------------------------


def impact_level(score: float) -> ImpactLevel:
    for threshold, level in _IMPACT_THRESHOLDS:
        if score >= threshold:
            return level
    return ImpactLevel.LOW


def impact_score(estimated_delay: float, affected: int, high_risks: int) -> float:
    score = 0.0
    if estimated_delay > 0:
        score += min(0.4, estimated_delay / _DELAY_SCALE)
    score += min(0.3, affected / _AFFECTED_SCALE)
    score += min(0.3, high_risks / _RISK_SCALE)
    return round(score, 6)


def _recommendations(level: ImpactLevel, report_risks: list[RiskFactor], project_delay: float, blocked: list[str]) -> list[str]:
    recs: list[str] = []
    if level in (ImpactLevel.HIGH, ImpactLevel.CRITICAL):
        recs.append("Review the change with owners of the affected tasks before applying it")
    if project_delay > 0:
        recs.append(f"Project end date moves by {project_delay:g}; re-plan critical path tasks or add capacity")
    if blocked:
        recs.append(f"Re-plan or cancel {len(blocked)} blocked dependent task(s)")
    for risk in report_risks:
        if risk.type == "unfinished_prerequisite":
            recs.append("Confirm the removed prerequisites are no longer needed before starting dependents")
    if not recs:
        recs.append("No action required")
    return recs


def analyze_impact(
    graph: DependencyGraph,
    task_id: str,
    change_type: ChangeType | str,
    *,
    delay: float = 0.0,
) -> ImpactReport:
    """Estimate how a change to *task_id* propagates to its dependents.

    Raises
    ------
    UpmTaskNotFoundError
        If *task_id* is not in the graph.
    UpmCycleError
        For ``delay`` when the graph has a cycle (no schedule exists).
    ValueError
        If *delay* is negative.
    """
    change = ChangeType(change_type)
    task = graph.require_task(task_id)
    if delay < 0:
        raise ValueError(f"delay must be >= 0, got {delay}")

    direct = graph.dependents(task_id)
    affected = graph.dependents(task_id, transitive=True)
    risks: list[RiskFactor] = []
    task_delays: dict[str, float] = {}
    project_delay = 0.0
    unblocked: list[str] = []
    blocked: list[str] = []

    if change == ChangeType.DELAY:
        baseline = critical_path(graph)
        shifted = graph.copy()
        shifted.add_task(task.model_copy(update={"duration": task.duration + delay}))
        after = critical_path(shifted)
        for candidate in [task_id, *affected]:
            slip = after.schedule[candidate].earliest_finish - baseline.schedule[candidate].earliest_finish
            if slip > _EPSILON:
                task_delays[candidate] = slip
        project_delay = max(0.0, after.total_duration - baseline.total_duration)
        if project_delay > _EPSILON:
            risks.append(
                RiskFactor(
                    type="critical_path_delay",
                    severity=Severity.HIGH,
                    description=f"Delay pushes the project end by {project_delay:g}",
                    task_ids=[task_id],
                )
            )
        slipped = [t for t in task_delays if t != task_id]
        if slipped:
            risks.append(
                RiskFactor(
                    type="schedule_slip",
                    severity=Severity.MEDIUM,
                    description=f"{len(slipped)} dependent task(s) finish later",
                    task_ids=slipped,
                )
            )
        affected = [t for t in affected if t in task_delays]
    elif change == ChangeType.CANCEL:
        blocked = [t for t in affected if graph.require_task(t).status not in _DONE]
        risks.append(
            RiskFactor(
                type="task_cancellation",
                severity=Severity.HIGH,
                description="Task cancellation leaves dependent tasks without a prerequisite",
                task_ids=blocked,
            )
        )
    elif change == ChangeType.COMPLETE:
        affected = direct
        for dependent in direct:
            dep_task = graph.require_task(dependent)
            if dep_task.status != TaskStatus.PENDING:
                continue
            others = [p for p in graph.prerequisite_ids(dependent) if p != task_id]
            if all(graph.require_task(p).status in _DONE for p in others):
                unblocked.append(dependent)
    elif change == ChangeType.REMOVE_DEPENDENCY:
        unfinished = [p for p in graph.prerequisite_ids(task_id) if graph.require_task(p).status not in _DONE]
        if unfinished:
            risks.append(
                RiskFactor(
                    type="unfinished_prerequisite",
                    severity=Severity.MEDIUM,
                    description="Removed prerequisites are not finished yet",
                    task_ids=unfinished,
                )
            )

    estimated_delay = max(task_delays.values(), default=0.0)
    high_risks = sum(1 for risk in risks if risk.severity in (Severity.HIGH, Severity.CRITICAL))
    score = impact_score(estimated_delay, len(affected), high_risks)
    level = impact_level(score)

    return ImpactReport(
        task_id=task_id,
        change_type=change,
        direct_dependents=direct,
        affected_tasks=affected,
        task_delays=task_delays,
        estimated_delay=estimated_delay,
        project_delay=project_delay,
        risk_factors=risks,
        impact_score=score,
        impact_level=level,
        recommendations=_recommendations(level, risks, project_delay, blocked),
        unblocked_tasks=unblocked,
        blocked_tasks=blocked,
    )


# ----------------------------------------------------------------------
# Conflicts
# ----------------------------------------------------------------------


def _status_violation(dep: Dependency, task: Task, prerequisite: Task) -> bool:
    if prerequisite.status in _DONE:
        return False
    if dep.type == DependencyType.START_TO_START:
        return task.status in _STARTED and prerequisite.status == TaskStatus.PENDING
    if dep.type == DependencyType.FINISH_TO_FINISH:
        return task.status == TaskStatus.COMPLETED
    return task.status in _STARTED


def _resource_conflicts(graph: DependencyGraph, scope: list[str]) -> list[Conflict]:
    try:
        schedule = critical_path(graph).schedule
    except UpmCycleError:
        _logger.debug("Skipping resource conflicts: graph has cycles")
        return []

    by_resource: dict[str, list[str]] = {}
    for task_id in scope:
        task = graph.require_task(task_id)
        if effective_duration(task) <= 0:
            continue
        for resource in task.resources:
            by_resource.setdefault(resource, []).append(task_id)

    conflicts: list[Conflict] = []
    for resource in sorted(by_resource):
        members = sorted(by_resource[resource], key=lambda t: (schedule[t].earliest_start, t))
        for i, first in enumerate(members):
            a = schedule[first]
            for second in members[i + 1 :]:
                b = schedule[second]
                overlap = min(a.earliest_finish, b.earliest_finish) - max(a.earliest_start, b.earliest_start)
                if overlap <= _EPSILON:
                    continue
                conflicts.append(
                    Conflict(
                        id=f"resource:{resource}:{first}:{second}",
                        type=ConflictType.RESOURCE,
                        severity=Severity.HIGH,
                        task_ids=[first, second],
                        description=f"Tasks {first} and {second} need {resource} at the same time",
                        details={
                            "resource": resource,
                            "windows": {
                                first: [a.earliest_start, a.earliest_finish],
                                second: [b.earliest_start, b.earliest_finish],
                            },
                            "overlap": overlap,
                        },
                    )
                )
    return conflicts


def detect_conflicts(graph: DependencyGraph, task_ids: Iterable[str] | None = None) -> list[Conflict]:
    """Structural, priority, status and resource conflicts among *task_ids*."""
    scope = [t for t in dict.fromkeys(task_ids) if t in graph] if task_ids is not None else graph.task_ids
    conflicts: list[Conflict] = []

    for cycle in detect_cycles(graph, scope):
        conflicts.append(
            Conflict(
                id="dependency:" + ">".join(cycle.cycle),
                type=ConflictType.DEPENDENCY,
                severity=Severity.HIGH,
                task_ids=cycle.members,
                description="Circular dependency detected",
                details={"cycle": cycle.cycle},
            )
        )

    for task_id in scope:
        task = graph.require_task(task_id)
        for dep in graph.get_dependencies(task_id):
            prerequisite = graph.require_task(dep.task_id)
            if prerequisite.placeholder:
                conflicts.append(
                    Conflict(
                        id=f"missing:{task_id}:{dep.task_id}",
                        type=ConflictType.MISSING_DEPENDENCY,
                        severity=Severity.MEDIUM,
                        task_ids=[task_id, dep.task_id],
                        description=f"{task_id} depends on undefined task {dep.task_id}",
                    )
                )
                continue
            gap = task.priority.rank - prerequisite.priority.rank
            if gap > 0:
                conflicts.append(
                    Conflict(
                        id=f"priority:{task_id}:{dep.task_id}",
                        type=ConflictType.PRIORITY,
                        severity=Severity.HIGH if gap >= 2 else Severity.MEDIUM,
                        task_ids=[task_id, dep.task_id],
                        description=f"{task.priority} priority task depends on {prerequisite.priority} priority task",
                        details={
                            "task": {"id": task_id, "priority": str(task.priority)},
                            "prerequisite": {"id": dep.task_id, "priority": str(prerequisite.priority)},
                        },
                    )
                )
            if _status_violation(dep, task, prerequisite):
                conflicts.append(
                    Conflict(
                        id=f"status:{task_id}:{dep.task_id}",
                        type=ConflictType.STATUS,
                        severity=Severity.HIGH if task.status == TaskStatus.COMPLETED else Severity.MEDIUM,
                        task_ids=[task_id, dep.task_id],
                        description=f"{task_id} is {task.status} but prerequisite {dep.task_id} is {prerequisite.status}",
                        details={"dependencyType": str(dep.type)},
                    )
                )

    conflicts.extend(_resource_conflicts(graph, scope))
    return conflicts


# ----------------------------------------------------------------------
# Optimisation, summary, export
# ----------------------------------------------------------------------


def _plain(dep: Dependency) -> bool:
    return dep.type == DependencyType.FINISH_TO_START and dep.lag == 0


def _plain_path(graph: DependencyGraph, source: str, target: str, skip_direct: bool) -> list[str] | None:
    """Shortest chain source -> ... -> target over plain finish-to-start edges."""
    parents: dict[str, str] = {}
    queue: deque[str] = deque()
    for dep in graph.get_dependencies(source):
        if skip_direct and dep.task_id == target:
            continue
        if _plain(dep) and dep.task_id not in parents:
            parents[dep.task_id] = source
            queue.append(dep.task_id)
    while queue:
        current = queue.popleft()
        if current == target:
            chain = [current]
            while chain[-1] != source:
                chain.append(parents[chain[-1]])
            return list(reversed(chain))
        for dep in graph.get_dependencies(current):
            if _plain(dep) and dep.task_id not in parents and dep.task_id != source:
                parents[dep.task_id] = current
                queue.append(dep.task_id)
    return None


def redundant_dependencies(graph: DependencyGraph, task_ids: Iterable[str] | None = None) -> list[RedundantDependency]:
    """Plain finish-to-start edges already implied by a longer chain.

    Only zero-lag finish-to-start edges qualify, and only chains made of
    such edges count, so removing a reported edge never changes the schedule.
    """
    scoped = _scope(graph, task_ids)
    redundant: list[RedundantDependency] = []
    for task_id, dep in scoped.edges():
        if not _plain(dep):
            continue
        chain = _plain_path(scoped, task_id, dep.task_id, skip_direct=True)
        if chain is not None:
            redundant.append(RedundantDependency(task_id=task_id, dependency_task_id=dep.task_id, implied_by=chain))
    return redundant


def analyze(graph: DependencyGraph, task_ids: Iterable[str] | None = None) -> DependencyAnalysis:
    """Full analysis pass used by reports and the ``deps analyze`` command."""
    ids = list(task_ids) if task_ids is not None else None
    scoped = _scope(graph, ids)
    cycles = detect_cycles(scoped)
    order: list[str] = []
    path = None
    redundant: list[RedundantDependency] = []
    if not cycles:
        order = topological_order(scoped)
        path = critical_path(scoped)
        redundant = redundant_dependencies(scoped)

    return DependencyAnalysis(
        task_count=len(scoped),
        dependency_count=scoped.edge_count(),
        root_tasks=[t for t in scoped.task_ids if not scoped.prerequisite_ids(t)],
        leaf_tasks=[t for t in scoped.task_ids if not scoped.dependents(t)],
        placeholder_tasks=[task.id for task in scoped.tasks if task.placeholder],
        circular_dependencies=cycles,
        conflicts=detect_conflicts(graph, ids),
        critical_path=path,
        topological_order=order,
        redundant_dependencies=redundant,
    )


def _dot_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _dot_quote(value: str) -> str:
    return f'"{_dot_escape(value)}"'


def to_dot(
    graph: DependencyGraph,
    task_ids: Iterable[str] | None = None,
    highlight: Iterable[str] = (),
) -> str:
    """Graphviz DOT rendering; edges point from prerequisite to dependent.

    Critical tasks are drawn red when the graph is acyclic, placeholders
    dashed, and tasks in *highlight* filled.
    """
    marked = set(highlight)
    scoped = _scope(graph, task_ids)
    try:
        critical = set(critical_path(scoped).critical_tasks)
    except UpmCycleError:
        critical = set()

    lines = ["digraph dependencies {", "  rankdir=LR;", "  node [shape=box, style=rounded];"]
    for task in scoped.tasks:
        attrs = [f'label="{_dot_escape(task.name or task.id)}\\n({task.duration:g})"']
        styles = ["rounded"]
        if task.placeholder:
            styles.append("dashed")
        if task.id in marked:
            styles.append("filled")
            attrs.append("fillcolor=lightyellow")
        if len(styles) > 1:
            attrs.append(f'style="{",".join(styles)}"')
        if task.id in critical:
            attrs.append("color=red")
            attrs.append("penwidth=2")
        lines.append(f"  {_dot_quote(task.id)} [{', '.join(attrs)}];")
    for task_id, dep in scoped.edges():
        attrs = []
        if dep.type != DependencyType.FINISH_TO_START or dep.lag:
            short = {"finish_to_start": "FS", "start_to_start": "SS", "finish_to_finish": "FF"}[str(dep.type)]
            attrs.append(f"label={_dot_quote(short + (f'+{dep.lag:g}' if dep.lag else ''))}")
        if task_id in critical and dep.task_id in critical:
            attrs.append("color=red")
        suffix = f" [{', '.join(attrs)}]" if attrs else ""
        lines.append(f"  {_dot_quote(dep.task_id)} -> {_dot_quote(task_id)}{suffix};")
    lines.append("}")
    return "\n".join(lines) + "\n"
