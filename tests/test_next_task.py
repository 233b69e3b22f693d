"""Tests for next-task selection (engine/selector.py)."""

from __future__ import annotations

from task_hero.engine.graph import TaskGraph
from task_hero.engine.model import Task, TaskPriority, TaskStatus
from task_hero.engine.selector import NoTaskReason, ready_tasks, select_next
from task_hero.engine.status import StatusStateMachine


def test_scenario_first_then_dependent() -> None:
    graph = TaskGraph([
        Task(id="1", priority=TaskPriority.HIGH),
        Task(id="2", priority=TaskPriority.HIGH, dependencies=["1"]),
    ])
    assert select_next(graph).task.id == "1"

    StatusStateMachine().apply(graph, "1", "done")
    assert select_next(graph).task.id == "2"


def test_priority_beats_id() -> None:
    graph = TaskGraph([
        Task(id="1", priority=TaskPriority.LOW),
        Task(id="2", priority=TaskPriority.MEDIUM),
        Task(id="3", priority=TaskPriority.CRITICAL),
        Task(id="4", priority=TaskPriority.HIGH),
    ])
    assert [t.id for t in ready_tasks(graph)] == ["3", "4", "2", "1"]


def test_ties_go_to_lower_natural_id() -> None:
    graph = TaskGraph([Task(id="10"), Task(id="9"), Task(id="9.1", parent_id="9")])
    selection = select_next(graph)
    assert selection.task.id == "9"
    assert selection.candidates == 3


def test_never_returns_task_with_unmet_dependency() -> None:
    graph = TaskGraph([
        Task(id="1", status=TaskStatus.IN_PROGRESS),
        Task(id="2", dependencies=["1"], priority=TaskPriority.CRITICAL),
        Task(id="3", dependencies=["404"], priority=TaskPriority.CRITICAL),
        Task(id="4", priority=TaskPriority.LOW),
    ])
    assert select_next(graph).task.id == "4"


def test_all_blocked_by_dependencies() -> None:
    graph = TaskGraph([
        Task(id="1", status=TaskStatus.CANCELLED),
        Task(id="2", dependencies=["1"]),
    ])
    selection = select_next(graph)
    assert selection.task is None
    assert selection.reason == NoTaskReason.ALL_BLOCKED_BY_DEPENDENCIES


def test_all_completed() -> None:
    graph = TaskGraph([
        Task(id="1", status=TaskStatus.DONE),
        Task(id="2", status=TaskStatus.CANCELLED),
    ])
    assert select_next(graph).reason == NoTaskReason.ALL_COMPLETED


def test_no_pending_tasks() -> None:
    graph = TaskGraph([Task(id="1", status=TaskStatus.IN_PROGRESS), Task(id="2", status=TaskStatus.DONE)])
    assert select_next(graph).reason == NoTaskReason.NO_PENDING_TASKS


def test_empty_graph() -> None:
    selection = select_next(TaskGraph())
    assert selection.reason == NoTaskReason.NO_PENDING_TASKS
    assert selection.to_dict()["task"] is None
