"""Pick the next workable task."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from ..utils import id_sort_key
from .graph import TaskGraph
from .model import Task, TaskStatus


class NoTaskReason(str, Enum):
    NO_PENDING_TASKS = "NoPendingTasks"
    ALL_BLOCKED_BY_DEPENDENCIES = "AllBlockedByDependencies"
    ALL_COMPLETED = "AllCompleted"

    @property
    def message(self) -> str:
        return {
            "NoPendingTasks": "No pending tasks. Remaining work is in progress, in review, blocked or deferred.",
            "AllBlockedByDependencies": "Every pending task is waiting on a dependency that is not done.",
            "AllCompleted": "All tasks are completed.",
        }[self.value]


@dataclass
class Selection:
    task: Optional[Task] = None
    reason: Optional[NoTaskReason] = None
    candidates: int = 0

    @property
    def found(self) -> bool:
        return self.task is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task.to_dict() if self.task else None,
            "reason": self.reason.value if self.reason else None,
            "message": self.reason.message if self.reason else None,
            "candidates": self.candidates,
        }


def _rank(task: Task) -> tuple:
    return (task.priority.sort_key, id_sort_key(task.id))


def is_eligible(graph: TaskGraph, task: Task) -> bool:
    """Pending, and every dependency exists and is done."""
    if task.status != TaskStatus.PENDING:
        return False
    for dep_id in task.dependencies:
        dep = graph.get_task(dep_id)
        if dep is None or dep.status != TaskStatus.DONE:
            return False
    return True


def ready_tasks(graph: TaskGraph) -> list[Task]:
    """All eligible tasks, best first: priority, then lower id."""
    return sorted((t for t in graph if is_eligible(graph, t)), key=_rank)


def select_next(graph: TaskGraph) -> Selection:
    candidates = ready_tasks(graph)
    if candidates:
        return Selection(task=candidates[0], candidates=len(candidates))

    tasks = graph.tasks
    if any(t.status == TaskStatus.PENDING for t in tasks):
        reason = NoTaskReason.ALL_BLOCKED_BY_DEPENDENCIES
    elif tasks and all(t.status in (TaskStatus.DONE, TaskStatus.CANCELLED) for t in tasks):
        reason = NoTaskReason.ALL_COMPLETED
    else:
        reason = NoTaskReason.NO_PENDING_TASKS
    return Selection(reason=reason)
