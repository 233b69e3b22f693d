"""Tests for dependency validation and repair (engine/validator.py)."""

from __future__ import annotations

import time

import pytest

from task_hero.engine import validator
from task_hero.engine.errors import CycleError, FixConvergenceError
from task_hero.engine.graph import TaskGraph
from task_hero.engine.model import Task
from task_hero.engine.validator import (
    Cycle,
    DanglingReference,
    DuplicateDependency,
    SelfDependency,
    find_cycles,
    fix,
    validate,
)


def _graph(edges: dict[str, list[str]]) -> TaskGraph:
    return TaskGraph([Task(id=tid, dependencies=list(deps)) for tid, deps in edges.items()])


def _edges(graph: TaskGraph) -> dict[str, list[str]]:
    return {t.id: list(t.dependencies) for t in graph}


class TestValidate:
    def test_clean_graph(self) -> None:
        assert validate(_graph({"1": [], "2": ["1"], "3": ["1", "2"]})) == []

    def test_dangling_reference_reported_once(self) -> None:
        issues = validate(_graph({"1": [], "2": [], "3": ["99"]}))
        assert issues == [DanglingReference("3", "99")]

    def test_self_dependency_is_not_a_cycle(self) -> None:
        issues = validate(_graph({"1": ["1"]}))
        assert issues == [SelfDependency("1")]

    def test_duplicate_edge(self) -> None:
        issues = validate(_graph({"1": [], "2": ["1", "1"]}))
        assert issues == [DuplicateDependency("2", "1")]

    def test_reports_every_problem(self) -> None:
        graph = _graph({"1": ["2"], "2": ["1"], "3": ["3", "42"]})
        kinds = sorted(issue.kind for issue in validate(graph))
        assert kinds == ["cycle", "dangling_reference", "self_dependency"]

    def test_cycle_path_starts_and_ends_at_entry(self) -> None:
        cycles = find_cycles(_graph({"1": ["2"], "2": ["3"], "3": ["1"]}))
        assert len(cycles) == 1
        path = cycles[0].path
        assert path[0] == path[-1]
        assert set(path) == {"1", "2", "3"}
        assert len(cycles[0].edges()) == 3

    def test_issue_messages_name_task_ids(self) -> None:
        issue = DanglingReference("3", "99")
        assert issue.to_dict() == {
            "type": "dangling_reference",
            "task": "3",
            "missing_id": "99",
            "message": "Task 3 depends on missing task 99",
        }
        assert Cycle(("1", "2", "1")).message == "Dependency cycle: 1 -> 2 -> 1"


class TestNoCycleIffTopologicalOrder:
    @pytest.mark.parametrize(
        "edges",
        [
            {"1": [], "2": ["1"]},
            {"1": ["2"], "2": ["1"]},
            {"1": ["1"], "2": ["1"]},
            {"1": ["9"], "2": ["1"], "3": ["2", "1"]},
            {"1": ["3"], "2": ["1"], "3": ["2"], "4": ["3"]},
            {"a": ["b"], "b": ["c"], "c": [], "d": ["a", "c"]},
        ],
    )
    def test_property(self, edges: dict[str, list[str]]) -> None:
        graph = _graph(edges)
        has_cycle = any(isinstance(issue, Cycle) for issue in validate(graph))
        try:
            graph.topological_order()
            orderable = True
        except CycleError:
            orderable = False
        assert has_cycle != orderable


class TestFix:
    def test_dangling_removed_then_valid(self) -> None:
        graph = _graph({"1": [], "2": [], "3": ["99"]})
        report = fix(graph)
        assert report.removed_edges == [("3", "99")]
        assert validate(graph) == []
        assert len(graph) == 3

    def test_repeated_broken_edges_are_all_reported(self) -> None:
        graph = _graph({"1": ["1", "1"], "3": ["99", "99"]})
        before = graph.edge_count()
        found = validate(graph)

        report = fix(graph)
        assert report.removed_edges == [("1", "1"), ("1", "1"), ("3", "99"), ("3", "99")]
        assert len(report.removed_edges) == before - graph.edge_count()
        assert sorted(found, key=repr) == sorted(report.repaired, key=repr)
        assert report.repaired == [
            SelfDependency("1"),
            DuplicateDependency("1", "1"),
            DanglingReference("3", "99"),
            DuplicateDependency("3", "99"),
        ]
        assert validate(graph) == []

    def test_fix_order_and_report(self) -> None:
        graph = _graph({"1": ["1", "2"], "2": ["1", "77", "1"]})
        report = fix(graph)
        assert report.removed_edges[:3] == [("1", "1"), ("2", "77"), ("2", "1")]
        # The remaining 1 <-> 2 cycle breaks at the edge pointing at the larger id.
        assert report.removed_edges[3:] == [("1", "2")]
        assert _edges(graph) == {"1": [], "2": ["1"]}
        assert report.cycle_iterations == 1
        assert validate(graph) == []

    def test_cycle_break_prefers_largest_depends_on(self) -> None:
        graph = _graph({"1": ["10"], "2": ["1"], "10": ["2"]})
        report = fix(graph)
        assert report.removed_edges == [("1", "10")]

    def test_fix_is_idempotent(self) -> None:
        graph = _graph({
            "1": ["4"],
            "2": ["1", "1"],
            "3": ["2", "5"],
            "4": ["3", "4"],
            "5": ["88"],
            "6": ["5", "3"],
        })
        fix(graph)
        once = _edges(graph)
        second = fix(graph)
        assert not second.changed
        assert _edges(graph) == once
        assert validate(graph) == []

    def test_never_deletes_tasks(self) -> None:
        graph = _graph({"1": ["2"], "2": ["3"], "3": ["1"]})
        fix(graph)
        assert sorted(t.id for t in graph) == ["1", "2", "3"]

    def test_convergence_budget(self, monkeypatch: pytest.MonkeyPatch) -> None:
        graph = _graph({"1": ["2"], "2": ["1"]})
        # Breaking an edge that is not on the cycle never makes progress.
        monkeypatch.setattr(validator, "_edge_to_break", lambda cycle: ("9", "9"))
        with pytest.raises(FixConvergenceError):
            fix(graph)


class TestScale:
    def test_long_chain_does_not_recurse(self) -> None:
        size = 10_000
        edges = {str(i): ([str(i - 1)] if i > 1 else []) for i in range(1, size + 1)}
        edges["1"] = [str(size)]
        graph = _graph(edges)

        started = time.perf_counter()
        cycles = find_cycles(graph)
        elapsed = time.perf_counter() - started

        assert len(cycles) == 1
        assert len(cycles[0].path) == size + 1
        assert elapsed < 5.0

    def test_wide_graph_fix(self) -> None:
        size = 10_000
        edges = {str(i): [str(j) for j in (i - 1, i - 2) if j >= 1] for i in range(1, size + 1)}
        graph = _graph(edges)
        assert validate(graph) == []
        assert len(graph.topological_order()) == size
