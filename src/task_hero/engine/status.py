"""Task status transitions and their side effects.

The machine is permissive: any status may move to any other.  What it
guarantees is that the side effects of a change are applied to the same
snapshot as the change itself:

* ``done`` stamps ``completed_at`` and reports which dependents just became
  workable.  Subtasks are independent units and are left alone.
* ``cancelled`` and ``deferred`` take a task out of next-task selection but
  keep it as a dependency target, so its dependents keep waiting until the
  edge is removed (see :meth:`TaskGraph.waiting_on_inactive`).
* Every transition resyncs the PRDs that own the task.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from loguru import logger

from ..utils import normalize_id
from .graph import TaskGraph
from .model import PRD, Task, TaskStatus, parse_status
from .prd_sync import PRDSyncEngine, SyncResult


@dataclass
class StatusChange:
    task: Task
    previous_status: TaskStatus
    status: TaskStatus
    unblocked: list[str] = field(default_factory=list)
    affected_prds: list[PRD] = field(default_factory=list)
    prd_results: list[SyncResult] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.previous_status != self.status

    @property
    def affected_prd(self) -> Optional[PRD]:
        return self.affected_prds[0] if self.affected_prds else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task.to_dict(),
            "previous_status": self.previous_status.value,
            "status": self.status.value,
            "changed": self.changed,
            "unblocked": list(self.unblocked),
            "affected_prd": self.affected_prd.to_dict() if self.affected_prd else None,
            "prd_updates": [r.to_dict() for r in self.prd_results],
        }


class StatusStateMachine:
    def __init__(self, prd_sync: Optional[PRDSyncEngine] = None) -> None:
        self.prd_sync = prd_sync or PRDSyncEngine()

    @staticmethod
    def states() -> list[str]:
        return [s.value for s in TaskStatus]

    @staticmethod
    def allowed_targets(status: TaskStatus) -> list[TaskStatus]:
        return [s for s in TaskStatus if s != status]

    @classmethod
    def transitions(cls) -> dict[str, list[str]]:
        return {s.value: [t.value for t in cls.allowed_targets(s)] for s in TaskStatus}

    @staticmethod
    def newly_eligible(graph: TaskGraph, done_task_id: str) -> list[str]:
        """Pending dependents of *done_task_id* whose dependencies are now all done."""
        eligible: list[str] = []
        for dep_id in graph.dependents_of(done_task_id):
            dependent = graph.get_task(dep_id)
            if dependent is None or dependent.status != TaskStatus.PENDING:
                continue
            deps = [graph.get_task(d) for d in dependent.dependencies]
            if all(d is not None and d.status == TaskStatus.DONE for d in deps):
                eligible.append(dep_id)
        return eligible

    def apply(self, graph: TaskGraph, task_id: str, status: Any) -> StatusChange:
        """Set *task_id* to *status* and apply every side effect to *graph*.

        Raises:
            NotFoundError: unknown task id.
            InvalidStatusError: *status* is not a task status.
        """
        target = parse_status(status)
        task = graph.require_task(task_id)
        previous = task.status

        if previous != target:
            task.transition(target)
            graph.mark_task_dirty(task.id)
            logger.info("Task {} status {} -> {}", task.id, previous.value, target.value)

        change = StatusChange(task=task, previous_status=previous, status=target)
        if target == TaskStatus.DONE:
            change.unblocked = self.newly_eligible(graph, task.id)

        for prd in graph.prds_for_task(task.id):
            change.affected_prds.append(prd)
            change.prd_results.append(self.prd_sync.resync(graph, prd))
        return change

    def apply_many(self, graph: TaskGraph, task_ids: Iterable[str], status: Any) -> list[StatusChange]:
        """Apply one status to several tasks; nothing changes if any id is unknown."""
        target = parse_status(status)
        ids = list(dict.fromkeys(normalize_id(tid) for tid in task_ids))
        for tid in ids:
            graph.require_task(tid)
        return [self.apply(graph, tid, target) for tid in ids]
