"""Tests for the in-memory task graph (engine/graph.py)."""

from __future__ import annotations

import copy

import pytest

from task_hero.engine.errors import CycleError, NotFoundError, SelfDependencyError
from task_hero.engine.graph import TaskGraph
from task_hero.engine.model import PRD, Task, TaskPriority, TaskStatus


def _graph(*rows: tuple, prds: tuple = ()) -> TaskGraph:
    """Build a graph from ``(id, [deps])`` or ``(id, [deps], status)`` tuples."""
    tasks = []
    for row in rows:
        task_id, deps = row[0], row[1]
        status = row[2] if len(row) > 2 else TaskStatus.PENDING
        tasks.append(Task(id=task_id, title=f"Task {task_id}", dependencies=list(deps), status=status))
    return TaskGraph(tasks, prds)


class TestConstruction:
    def test_fresh_graph_is_clean(self) -> None:
        graph = _graph(("1", []), ("2", ["1"]))
        assert len(graph) == 2
        assert not graph.is_dirty

    def test_duplicate_task_rejected(self) -> None:
        graph = _graph(("1", []))
        with pytest.raises(ValueError, match="already exists"):
            graph.add_task(Task(id="1"))

    def test_require_task_raises_not_found(self) -> None:
        with pytest.raises(NotFoundError, match="Task 9 not found"):
            _graph().require_task("9")

    def test_lookup_normalizes_ids(self) -> None:
        graph = _graph(("5", []))
        assert graph.get_task(5) is graph.get_task("5")  # type: ignore[arg-type]


class TestAddDependency:
    def test_adds_edge_and_marks_dirty(self) -> None:
        graph = _graph(("1", []), ("2", []))
        assert graph.add_dependency("2", "1") is True
        assert graph.dependencies_of("2") == ["1"]
        assert graph.dependents_of("1") == ["2"]
        assert graph.dirty_task_ids == {"2"}

    def test_existing_edge_is_noop(self) -> None:
        graph = _graph(("1", []), ("2", ["1"]))
        assert graph.add_dependency("2", "1") is False
        assert graph.get_task("2").dependencies == ["1"]
        assert not graph.is_dirty

    def test_self_dependency_rejected(self) -> None:
        graph = _graph(("1", []))
        with pytest.raises(SelfDependencyError):
            graph.add_dependency("1", "1")

    @pytest.mark.parametrize("task_id,depends_on", [("1", "99"), ("99", "1")])
    def test_missing_ids_rejected(self, task_id: str, depends_on: str) -> None:
        graph = _graph(("1", []))
        with pytest.raises(NotFoundError):
            graph.add_dependency(task_id, depends_on)

    def test_two_cycle_reports_path(self) -> None:
        graph = _graph(("1", []), ("2", []))
        graph.add_dependency("1", "2")
        with pytest.raises(CycleError) as excinfo:
            graph.add_dependency("2", "1")
        assert excinfo.value.path == ["1", "2", "1"]

    def test_transitive_cycle_leaves_graph_unchanged(self) -> None:
        graph = _graph(("1", []), ("2", ["1"]), ("3", ["2"]))
        before = copy.deepcopy([t.to_dict() for t in graph])
        with pytest.raises(CycleError) as excinfo:
            graph.add_dependency("1", "3")
        assert excinfo.value.path == ["3", "2", "1", "3"]
        assert [t.to_dict() for t in graph] == before
        assert not graph.is_dirty


class TestRemoveDependency:
    def test_remove_is_idempotent(self) -> None:
        graph = _graph(("1", []), ("2", ["1"]))
        assert graph.remove_dependency("2", "1") is True
        assert graph.remove_dependency("2", "1") is False
        assert graph.dependencies_of("2") == []

    def test_remove_drops_every_copy(self) -> None:
        graph = _graph(("1", []), ("2", ["1", "1"]))
        graph.remove_dependency("2", "1")
        assert graph.get_task("2").dependencies == []

    def test_dedupe_keeps_first_occurrence(self) -> None:
        graph = _graph(("1", []), ("3", []), ("2", ["3", "1", "3"]))
        assert graph.dedupe_dependencies("2") == ["3"]
        assert graph.get_task("2").dependencies == ["3", "1"]


class TestRemoveEntities:
    def test_remove_task_detaches_edges_and_links(self) -> None:
        graph = _graph(("1", []), ("2", ["1"]), ("3", ["1", "2"]), prds=(PRD(id="p", linked_tasks=["1", "3"]),))
        assert graph.remove_task("1") == ["2", "3"]
        assert "1" not in graph
        assert graph.edges() == [("3", "2")]
        assert graph.get_prd("p").linked_tasks == ["3"]
        assert graph.dirty_prd_ids == {"p"}
        assert "1" in graph.dirty_task_ids

    def test_remove_missing_task(self) -> None:
        with pytest.raises(NotFoundError):
            _graph(("1", [])).remove_task("2")

    def test_remove_prd_clears_owner(self) -> None:
        graph = TaskGraph(
            [Task(id="1", prd_id="p"), Task(id="2", prd_id="q")],
            [PRD(id="p", linked_tasks=["1"]), PRD(id="q", linked_tasks=["2"])],
        )
        assert graph.remove_prd("p") == ["1"]
        assert graph.get_prd("p") is None
        assert graph.get_task("1").prd_id is None
        assert graph.get_task("2").prd_id == "q"
        assert graph.is_dirty


class TestTopologicalOrder:
    def test_dependencies_come_first_with_natural_tie_break(self) -> None:
        graph = _graph(("10", []), ("2", []), ("3", ["10"]), ("1", ["3", "2"]))
        assert graph.topological_order() == ["2", "10", "3", "1"]

    def test_ignores_self_and_dangling_edges(self) -> None:
        graph = _graph(("1", ["1"]), ("2", ["99", "1"]))
        assert graph.topological_order() == ["1", "2"]

    def test_cycle_raises(self) -> None:
        graph = _graph(("1", ["3"]), ("2", ["1"]), ("3", ["2"]), ("4", []))
        with pytest.raises(CycleError) as excinfo:
            graph.topological_order()
        path = excinfo.value.path
        assert path[0] == path[-1]
        assert set(path) == {"1", "2", "3"}


class TestExecutionBatches:
    def test_layers_skip_done_tasks(self) -> None:
        graph = _graph(
            ("1", [], TaskStatus.DONE),
            ("2", ["1"]),
            ("3", ["1"]),
            ("4", ["2", "3"]),
        )
        graph.get_task("3").priority = TaskPriority.CRITICAL
        assert graph.execution_batches() == [["3", "2"], ["4"]]

    def test_cycle_members_left_out(self) -> None:
        graph = _graph(("1", ["2"]), ("2", ["1"]), ("3", []))
        assert graph.execution_batches() == [["3"]]


class TestHierarchyAndLinks:
    def test_subtasks_recursive(self) -> None:
        graph = TaskGraph([
            Task(id="1"),
            Task(id="1.1", parent_id="1"),
            Task(id="1.2", parent_id="1"),
            Task(id="1.1.1", parent_id="1.1"),
        ])
        assert graph.subtasks_of("1", recursive=False) == ["1.1", "1.2"]
        assert sorted(graph.subtasks_of("1")) == ["1.1", "1.1.1", "1.2"]

    def test_prds_for_task_prefers_owner(self) -> None:
        owner = PRD(id="1")
        linker = PRD(id="2", linked_tasks=["5"])
        graph = TaskGraph([Task(id="5", prd_id="1")], [linker, owner])
        assert [p.id for p in graph.prds_for_task("5")] == ["1", "2"]

    def test_waiting_on_inactive(self) -> None:
        graph = _graph(
            ("1", [], TaskStatus.CANCELLED),
            ("2", [], TaskStatus.DEFERRED),
            ("3", ["1", "2"]),
            ("4", ["1"], TaskStatus.DONE),
        )
        assert graph.waiting_on_inactive() == {"3": ["1", "2"]}
