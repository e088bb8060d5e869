from __future__ import annotations

import pytest

from upm.deps import (
    DependencyGraph,
    analyze,
    analyze_impact,
    critical_path,
    detect_conflicts,
    detect_cycles,
    redundant_dependencies,
    to_dot,
    topological_order,
)
from upm.deps.analysis import impact_level, impact_score
from upm.exceptions import UpmCycleError, UpmTaskNotFoundError
from upm.models.tasks import (
    ChangeType,
    ConflictType,
    Dependency,
    DependencyType,
    ImpactLevel,
    Severity,
    Task,
    TaskPriority,
    TaskStatus,
)


def _diamond(**status: TaskStatus) -> DependencyGraph:
    """a(3) -> b(2), c(4) -> d(1); critical path a, c, d (8)."""
    durations = {"a": 3, "b": 2, "c": 4, "d": 1}
    graph = DependencyGraph(
        Task(id=t, duration=d, status=status.get(t, TaskStatus.PENDING)) for t, d in durations.items()
    )
    graph.add_dependencies("b", [Dependency(task_id="a")])
    graph.add_dependencies("c", [Dependency(task_id="a")])
    graph.add_dependencies("d", [Dependency(task_id="b"), Dependency(task_id="c")])
    return graph


def _cycle() -> DependencyGraph:
    graph = DependencyGraph([Task(id="a"), Task(id="b"), Task(id="c")])
    graph.add_dependencies("a", [Dependency(task_id="b")])
    graph.add_dependencies("b", [Dependency(task_id="c")])
    graph.add_dependencies("c", [Dependency(task_id="a")])
    return graph


# ----------------------------------------------------------------------
# Cycles and ordering
# ----------------------------------------------------------------------


def test_detect_cycles_reports_each_cycle_once() -> None:
    cycles = detect_cycles(_cycle())

    assert len(cycles) == 1
    assert cycles[0].cycle == ["a", "b", "c", "a"]
    assert cycles[0].task_id == "c"
    assert cycles[0].dependency_task_id == "a"
    assert cycles[0].severity == Severity.HIGH


def test_detect_cycles_on_acyclic_graph() -> None:
    assert detect_cycles(_diamond()) == []


def test_topological_order_is_deterministic() -> None:
    graph = _diamond()
    graph.add_task(Task(id="z"))

    order = topological_order(graph)

    assert order == ["a", "b", "c", "d", "z"]
    position = {task_id: i for i, task_id in enumerate(order)}
    for task_id, dep in graph.edges():
        assert position[dep.task_id] < position[task_id]


def test_topological_order_raises_on_cycle() -> None:
    with pytest.raises(UpmCycleError) as exc_info:
        topological_order(_cycle())
    assert len(exc_info.value.cycles) == 1


# ----------------------------------------------------------------------
# Critical path
# ----------------------------------------------------------------------


def test_critical_path_finish_to_start() -> None:
    result = critical_path(_diamond())

    assert result.path == ["a", "c", "d"]
    assert result.total_duration == 8
    assert result.critical_tasks == ["a", "c", "d"]
    assert result.schedule["b"].slack == 2
    assert result.schedule["b"].critical is False
    assert result.total_duration == max(s.earliest_finish for s in result.schedule.values())
    assert all(result.schedule[t].slack == 0 for t in result.critical_tasks)


def test_critical_path_start_to_start_with_lag() -> None:
    graph = DependencyGraph([Task(id="x", duration=4), Task(id="y", duration=2)])
    graph.add_dependencies("y", [Dependency(task_id="x", type=DependencyType.START_TO_START, lag=1)])

    result = critical_path(graph)

    assert result.schedule["y"].earliest_start == 1
    assert result.schedule["y"].slack == 1
    assert result.total_duration == 4
    assert result.path == ["x"]


def test_critical_path_finish_to_finish() -> None:
    graph = DependencyGraph([Task(id="x", duration=4), Task(id="y", duration=2)])
    graph.add_dependencies("y", [Dependency(task_id="x", type=DependencyType.FINISH_TO_FINISH, lag=1)])

    result = critical_path(graph)

    assert result.schedule["y"].earliest_start == 3
    assert result.schedule["y"].earliest_finish == 5
    assert result.path == ["x", "y"]


def test_completed_tasks_take_no_time() -> None:
    result = critical_path(_diamond(a=TaskStatus.COMPLETED))
    assert result.total_duration == 5


def test_critical_path_restricted_and_empty() -> None:
    assert critical_path(_diamond(), ["a", "b"]).total_duration == 5
    empty = critical_path(DependencyGraph())
    assert empty.path == []
    assert empty.total_duration == 0


# ----------------------------------------------------------------------
# Impact
# ----------------------------------------------------------------------


@pytest.mark.parametrize(
    ("score", "level"),
    [
        (0.0, ImpactLevel.LOW),
        (0.29, ImpactLevel.LOW),
        (0.3, ImpactLevel.MEDIUM),
        (0.5, ImpactLevel.HIGH),
        (0.79, ImpactLevel.HIGH),
        (0.8, ImpactLevel.CRITICAL),
    ],
)
def test_impact_level_thresholds(score: float, level: ImpactLevel) -> None:
    assert impact_level(score) == level


def test_impact_score_caps() -> None:
    assert impact_score(400, 100, 50) == 1.0
    assert impact_score(0, 0, 0) == 0.0
    assert impact_score(20, 5, 0) == pytest.approx(0.7)


def test_delay_off_critical_path_absorbed_by_slack() -> None:
    report = analyze_impact(_diamond(), "b", ChangeType.DELAY, delay=1)

    assert report.task_delays == {"b": 1}
    assert report.project_delay == 0
    assert report.affected_tasks == []
    assert report.risk_factors == []
    assert report.impact_level == ImpactLevel.LOW


def test_delay_on_critical_path_moves_project_end() -> None:
    report = analyze_impact(_diamond(), "c", ChangeType.DELAY, delay=2)

    assert report.task_delays == {"c": 2, "d": 2}
    assert report.project_delay == 2
    assert report.estimated_delay == 2
    assert report.affected_tasks == ["d"]
    assert [r.type for r in report.risk_factors] == ["critical_path_delay", "schedule_slip"]
    assert report.impact_score == pytest.approx(0.35)
    assert report.impact_level == ImpactLevel.MEDIUM


def test_cancel_blocks_all_dependents() -> None:
    report = analyze_impact(_diamond(), "a", ChangeType.CANCEL)

    assert report.direct_dependents == ["b", "c"]
    assert report.blocked_tasks == ["b", "c", "d"]
    assert report.risk_factors[0].type == "task_cancellation"
    assert report.risk_factors[0].severity == Severity.HIGH
    assert report.impact_level == ImpactLevel.HIGH


def test_complete_unblocks_ready_dependents() -> None:
    graph = _diamond(a=TaskStatus.COMPLETED, b=TaskStatus.COMPLETED)

    report = analyze_impact(graph, "c", ChangeType.COMPLETE)

    assert report.affected_tasks == ["d"]
    assert report.unblocked_tasks == ["d"]

    report = analyze_impact(_diamond(), "c", ChangeType.COMPLETE)
    assert report.unblocked_tasks == []


def test_remove_dependency_flags_unfinished_prerequisites() -> None:
    report = analyze_impact(_diamond(), "d", ChangeType.REMOVE_DEPENDENCY)

    assert report.risk_factors[0].type == "unfinished_prerequisite"
    assert report.risk_factors[0].task_ids == ["b", "c"]


def test_impact_unknown_task_and_negative_delay() -> None:
    with pytest.raises(UpmTaskNotFoundError):
        analyze_impact(_diamond(), "nope", ChangeType.UPDATE)
    with pytest.raises(ValueError):
        analyze_impact(_diamond(), "a", ChangeType.DELAY, delay=-1)


# ----------------------------------------------------------------------
# Conflicts
# ----------------------------------------------------------------------


def test_detect_conflicts_kinds() -> None:
    graph = DependencyGraph(
        [
            Task(id="release", priority=TaskPriority.CRITICAL, status=TaskStatus.IN_PROGRESS),
            Task(id="docs", priority=TaskPriority.LOW),
            Task(id="p", duration=2, resources=["db"]),
            Task(id="q", duration=2, resources=["db"]),
        ]
    )
    graph.add_dependencies("release", [Dependency(task_id="docs"), Dependency(task_id="legal")])

    conflicts = {c.id: c for c in detect_conflicts(graph)}

    assert conflicts["priority:release:docs"].severity == Severity.HIGH
    assert conflicts["status:release:docs"].type == ConflictType.STATUS
    assert conflicts["missing:release:legal"].type == ConflictType.MISSING_DEPENDENCY
    resource = conflicts["resource:db:p:q"]
    assert resource.type == ConflictType.RESOURCE
    assert resource.details["overlap"] == 2


def test_detect_conflicts_reports_cycles_and_skips_resources() -> None:
    graph = _cycle()
    graph.add_task(Task(id="a", resources=["gpu"]))
    graph.add_task(Task(id="b", resources=["gpu"]))

    conflicts = detect_conflicts(graph)

    assert [c.type for c in conflicts] == [ConflictType.DEPENDENCY]
    assert conflicts[0].id == "dependency:a>b>c>a"


def test_sequential_resource_use_is_not_a_conflict() -> None:
    graph = DependencyGraph([Task(id="p", resources=["db"]), Task(id="q", resources=["db"])])
    graph.add_dependencies("q", [Dependency(task_id="p")])
    assert detect_conflicts(graph) == []


# ----------------------------------------------------------------------
# Optimisation, summary, export
# ----------------------------------------------------------------------


def test_redundant_dependencies() -> None:
    graph = DependencyGraph([Task(id="a"), Task(id="b"), Task(id="c")])
    graph.add_dependencies("b", [Dependency(task_id="a")])
    graph.add_dependencies("c", [Dependency(task_id="b"), Dependency(task_id="a")])

    redundant = redundant_dependencies(graph)

    assert len(redundant) == 1
    assert (redundant[0].task_id, redundant[0].dependency_task_id) == ("c", "a")
    assert redundant[0].implied_by == ["c", "b", "a"]


def test_lagged_edges_are_never_redundant() -> None:
    graph = DependencyGraph([Task(id="a"), Task(id="b"), Task(id="c")])
    graph.add_dependencies("b", [Dependency(task_id="a")])
    graph.add_dependencies("c", [Dependency(task_id="b"), Dependency(task_id="a", lag=1)])
    assert redundant_dependencies(graph) == []


def test_analyze_summary() -> None:
    result = analyze(_diamond())

    assert result.task_count == 4
    assert result.dependency_count == 4
    assert result.root_tasks == ["a"]
    assert result.leaf_tasks == ["d"]
    assert result.topological_order == ["a", "b", "c", "d"]
    assert result.critical_path is not None
    assert result.critical_path.path == ["a", "c", "d"]
    assert result.acyclic


def test_analyze_cyclic_graph_skips_schedule() -> None:
    result = analyze(_cycle())

    assert not result.acyclic
    assert result.critical_path is None
    assert result.topological_order == []


def test_to_dot() -> None:
    graph = _diamond()
    graph.add_dependencies("d", [Dependency(task_id="ghost")])

    dot = to_dot(graph, highlight=["b"])

    assert dot.startswith("digraph dependencies {")
    assert '"a" -> "c" [color=red];' in dot
    assert '"a" -> "b";' in dot
    assert 'style="rounded,dashed"' in dot
    assert "fillcolor=lightyellow" in dot
    assert dot.rstrip().endswith("}")
