"""Keep PRD status and statistics consistent with the tasks they generated.

Two directions, deliberately asymmetric:

* :meth:`PRDSyncEngine.resync` rolls task statuses *up* into the PRD and
  never touches a task.
* :meth:`PRDSyncEngine.cascade_done` is the explicit user action that pushes
  ``done`` *down* onto every linked task and subtask.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from .graph import TaskGraph
from .model import PRD, PRDStatus, TaskStats, TaskStatus


@dataclass
class SyncResult:
    prd_id: str
    previous_status: PRDStatus
    status: PRDStatus
    stats: TaskStats
    changed: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "prd_id": self.prd_id,
            "previous_status": self.previous_status.value,
            "status": self.status.value,
            "task_stats": self.stats.to_dict(),
            "changed": self.changed,
        }


@dataclass
class ResyncSummary:
    processed: int = 0
    updated: int = 0
    unchanged: int = 0
    results: list[SyncResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class CascadeResult:
    prd: PRD
    tasks_updated: int
    updated_task_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "prd": self.prd.to_dict(),
            "tasks_updated": self.tasks_updated,
            "updated_task_ids": list(self.updated_task_ids),
        }


@dataclass(frozen=True)
class LinkIssue:
    type: str
    severity: str
    message: str
    task_id: str
    prd_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity,
            "message": self.message,
            "task_id": self.task_id,
            "prd_id": self.prd_id,
        }


@dataclass
class LinkRepairReport:
    linked: list[tuple[str, str]] = field(default_factory=list)
    unlinked: list[tuple[str, str]] = field(default_factory=list)
    remaining: list[LinkIssue] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "linked": [{"prd_id": p, "task_id": t} for p, t in self.linked],
            "unlinked": [{"prd_id": p, "task_id": t} for p, t in self.unlinked],
            "remaining": [issue.to_dict() for issue in self.remaining],
        }


class PRDSyncEngine:
    """Stateless; every method works on the graph snapshot it is given."""

    # ------------------------------------------------------------------
    # Roll-up
    # ------------------------------------------------------------------

    @staticmethod
    def linked_task_ids(graph: TaskGraph, prd: PRD) -> list[str]:
        """The PRD's linked ids that resolve to a task in *graph*."""
        return [tid for tid in dict.fromkeys(prd.linked_tasks) if tid in graph]

    @staticmethod
    def derive_status(current: PRDStatus, statuses: list[TaskStatus]) -> PRDStatus:
        if current == PRDStatus.ARCHIVED:
            return PRDStatus.ARCHIVED
        if statuses and all(s == TaskStatus.DONE for s in statuses):
            return PRDStatus.DONE
        if any(s == TaskStatus.IN_PROGRESS for s in statuses):
            return PRDStatus.IN_PROGRESS
        return PRDStatus.PENDING

    def resync(self, graph: TaskGraph, prd: PRD) -> SyncResult:
        """Recompute ``task_stats`` and ``status`` from the linked tasks."""
        statuses = [graph.get_task(tid).status for tid in self.linked_task_ids(graph, prd)]  # type: ignore[union-attr]
        stats = TaskStats.from_statuses(statuses)
        previous = prd.status
        status = self.derive_status(previous, statuses)

        changed = False
        if stats != prd.task_stats:
            prd.task_stats = stats
            prd.touch()
            changed = True
        if status != previous:
            prd.set_status(status, "Automated update based on linked task statuses")
            changed = True
            logger.info("PRD {} status {} -> {}", prd.id, previous.value, status.value)
        if changed:
            graph.mark_prd_dirty(prd.id)
        return SyncResult(prd.id, previous, status, stats, changed)

    def resync_all(self, graph: TaskGraph) -> ResyncSummary:
        summary = ResyncSummary()
        for prd in graph.prds:
            result = self.resync(graph, prd)
            summary.processed += 1
            if result.changed:
                summary.updated += 1
            else:
                summary.unchanged += 1
            summary.results.append(result)
        logger.info(
            "Resynced {} PRD(s): {} updated, {} unchanged",
            summary.processed,
            summary.updated,
            summary.unchanged,
        )
        return summary

    # ------------------------------------------------------------------
    # Cascade and explicit actions
    # ------------------------------------------------------------------

    @staticmethod
    def cascade_targets(graph: TaskGraph, prd: PRD) -> list[str]:
        """Linked tasks, tasks naming the PRD in ``prd_id``, and all their subtasks."""
        roots = list(dict.fromkeys(
            [tid for tid in prd.linked_tasks if tid in graph] + graph.tasks_for_prd(prd.id)
        ))
        targets: dict[str, None] = {}
        for root in roots:
            targets[root] = None
            for sub in graph.subtasks_of(root, recursive=True):
                targets[sub] = None
        return list(targets)

    def cascade_done(self, graph: TaskGraph, prd: PRD) -> CascadeResult:
        """Mark the PRD done and force every target task to ``done``.

        Only the in-memory snapshot is changed; the caller commits it as one
        write, so either everything lands or nothing does.
        """
        updated: list[str] = []
        for tid in self.cascade_targets(graph, prd):
            task = graph.get_task(tid)
            if task is None or task.status == TaskStatus.DONE:
                continue
            task.transition(TaskStatus.DONE)
            graph.mark_task_dirty(tid)
            updated.append(tid)

        if prd.status != PRDStatus.DONE:
            prd.set_status(PRDStatus.DONE, "Marked done by user")
        prd.task_stats = TaskStats.from_statuses(
            [graph.get_task(tid).status for tid in self.linked_task_ids(graph, prd)]  # type: ignore[union-attr]
        )
        prd.touch()
        graph.mark_prd_dirty(prd.id)

        if updated:
            logger.info("Marked {} task(s) as done for PRD {}", len(updated), prd.id)
        return CascadeResult(prd=prd, tasks_updated=len(updated), updated_task_ids=updated)

    def archive(self, graph: TaskGraph, prd: PRD) -> PRD:
        if prd.status == PRDStatus.ARCHIVED:
            return prd
        if prd.status != PRDStatus.DONE:
            raise ValueError(f"Cannot archive PRD {prd.id} from {prd.status.value}; only done PRDs can be archived")
        prd.set_status(PRDStatus.ARCHIVED, "Archived by user")
        graph.mark_prd_dirty(prd.id)
        return prd

    def restore(self, graph: TaskGraph, prd: PRD) -> PRD:
        if prd.status != PRDStatus.ARCHIVED:
            raise ValueError(f"PRD {prd.id} is not archived")
        prd.set_status(PRDStatus.DONE, "Restored from archive")
        graph.mark_prd_dirty(prd.id)
        self.resync(graph, prd)
        return prd

    # ------------------------------------------------------------------
    # Link consistency
    # ------------------------------------------------------------------

    def check_links(self, graph: TaskGraph) -> list[LinkIssue]:
        issues: list[LinkIssue] = []
        for prd in graph.prds:
            for tid in dict.fromkeys(prd.linked_tasks):
                task = graph.get_task(tid)
                if task is None:
                    issues.append(LinkIssue(
                        "orphaned_task_link", "error",
                        f"PRD {prd.id} references non-existent task {tid}", tid, prd.id,
                    ))
                elif task.prd_id is not None and task.prd_id != prd.id:
                    issues.append(LinkIssue(
                        "prd_mismatch", "warning",
                        f"Task {tid} is linked from PRD {prd.id} but belongs to PRD {task.prd_id}", tid, prd.id,
                    ))

        for task in graph:
            if task.prd_id is None:
                continue
            prd = graph.get_prd(task.prd_id)
            if prd is None:
                issues.append(LinkIssue(
                    "missing_prd_reference", "warning",
                    f"Task {task.id} references non-existent PRD {task.prd_id}", task.id, task.prd_id,
                ))
            elif task.id not in prd.linked_tasks:
                issues.append(LinkIssue(
                    "missing_task_link", "warning",
                    f"PRD {prd.id} missing link to task {task.id}", task.id, prd.id,
                ))
        return issues

    def repair_links(self, graph: TaskGraph) -> LinkRepairReport:
        """Add missing links, drop orphaned ones, then resync the PRDs touched.

        Mismatched and missing PRD references need a human decision and are
        returned in ``remaining``.
        """
        report = LinkRepairReport()
        touched: dict[str, None] = {}
        for issue in self.check_links(graph):
            if issue.type == "missing_task_link":
                graph.require_prd(issue.prd_id).link(issue.task_id)
                report.linked.append((issue.prd_id, issue.task_id))
            elif issue.type == "orphaned_task_link":
                graph.require_prd(issue.prd_id).unlink(issue.task_id)
                report.unlinked.append((issue.prd_id, issue.task_id))
            else:
                report.remaining.append(issue)
                continue
            touched[issue.prd_id] = None
            graph.mark_prd_dirty(issue.prd_id)

        for prd_id in touched:
            self.resync(graph, graph.require_prd(prd_id))
        if touched:
            logger.info(
                "Repaired PRD links: {} added, {} removed",
                len(report.linked),
                len(report.unlinked),
            )
        return report
