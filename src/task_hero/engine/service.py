"""Caller-facing facade over the consistency engine.

Each public method is one logical mutation: load a snapshot from the
:class:`TaskStore`, mutate it through the graph, the status machine or the
PRD sync engine, commit, then emit events.  Events are only emitted after a
successful commit.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from loguru import logger

from ..config import get_events_config, load_project_config, state_dir_for
from ..utils import id_sort_key, normalize_id
from . import selector, validator
from .errors import CycleError, FixConvergenceError, SelfDependencyError
from .events import EventLog
from .graph import TaskGraph
from .model import PRD, PRDStatus, Task, TaskStatus, parse_prd_status, parse_priority, parse_status
from .prd_sync import CascadeResult, LinkIssue, LinkRepairReport, PRDSyncEngine, ResyncSummary, SyncResult
from .status import StatusChange, StatusStateMachine
from .store import TaskStore


def _next_id(existing: Iterable[str], prefix: str = "") -> str:
    """Smallest unused integer after the highest numeric id under *prefix*."""
    highest = 0
    for entity_id in existing:
        if prefix and not entity_id.startswith(prefix):
            continue
        tail = entity_id[len(prefix):]
        if tail.isdigit():
            highest = max(highest, int(tail))
    return f"{prefix}{highest + 1}"


class ConsistencyService:
    def __init__(
        self,
        project_dir: Path,
        store: Optional[TaskStore] = None,
        events: Optional[EventLog] = None,
    ) -> None:
        self.project_dir = Path(project_dir).resolve()
        self.state_dir = state_dir_for(self.project_dir)
        config, err = load_project_config(self.project_dir)
        if err:
            logger.warning("Ignoring unreadable config: {}", err)
        self.config = config

        events_cfg = get_events_config(config)
        self.store = store or TaskStore(self.state_dir)
        self.events = events or EventLog(
            self.state_dir / events_cfg["filename"],
            enabled=events_cfg["enabled"],
        )
        self.prd_sync = PRDSyncEngine()
        self.state_machine = StatusStateMachine(self.prd_sync)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _mutation(self) -> Iterator[tuple[TaskGraph, list[tuple[str, str, dict[str, Any]]]]]:
        pending: list[tuple[str, str, dict[str, Any]]] = []
        with self.store.transaction() as graph:
            yield graph, pending
        for event_type, entity_id, details in pending:
            self.events.emit(event_type, entity_id, **details)

    @staticmethod
    def _queue_status_events(pending: list, change: StatusChange) -> None:
        if change.changed:
            pending.append((
                "task.status_changed",
                change.task.id,
                {"from": change.previous_status.value, "to": change.status.value, "unblocked": change.unblocked},
            ))
        for result in change.prd_results:
            if result.previous_status != result.status:
                pending.append((
                    "prd.status_changed",
                    result.prd_id,
                    {"from": result.previous_status.value, "to": result.status.value},
                ))

    def snapshot(self) -> TaskGraph:
        return self.store.load_graph()

    def recent_events(self, limit: int = 100) -> list[dict[str, Any]]:
        return self.events.recent(limit)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def list_tasks(
        self,
        status: Optional[str] = None,
        prd_id: Optional[str] = None,
        include_subtasks: bool = True,
    ) -> list[Task]:
        graph = self.snapshot()
        wanted = parse_status(status) if status else None
        tasks = [
            t for t in graph
            if (wanted is None or t.status == wanted)
            and (prd_id is None or t.prd_id == normalize_id(prd_id))
            and (include_subtasks or not t.is_subtask)
        ]
        return sorted(tasks, key=lambda t: id_sort_key(t.id))

    def get_task(self, task_id: str) -> Task:
        return self.store.load_task(task_id)

    def create_task(
        self,
        title: str,
        description: str = "",
        details: str = "",
        test_strategy: str = "",
        priority: Any = "medium",
        dependencies: Iterable[Any] = (),
        parent_id: Optional[str] = None,
        prd_id: Optional[str] = None,
        task_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Task:
        """Create a task (or a subtask when *parent_id* is given).

        Dependencies go through :meth:`TaskGraph.add_dependency`, so a bad
        edge rejects the whole task.
        """
        level = parse_priority(priority)
        with self._mutation() as (graph, pending):
            parent = graph.require_task(parent_id) if parent_id else None
            prd = graph.require_prd(prd_id) if prd_id else None
            if task_id:
                new_id = normalize_id(task_id)
            elif parent is not None:
                new_id = _next_id((t.id for t in graph), prefix=f"{parent.id}.")
            else:
                new_id = _next_id(t.id for t in graph if not t.is_subtask)

            task = Task(
                id=new_id,
                title=title,
                description=description,
                details=details,
                test_strategy=test_strategy,
                priority=level,
                parent_id=parent.id if parent else None,
                prd_id=prd.id if prd else None,
                metadata=dict(metadata or {}),
            )
            graph.add_task(task)
            for dep in dependencies:
                graph.add_dependency(task.id, normalize_id(dep))
            if prd is not None:
                prd.link(task.id)
                self.prd_sync.resync(graph, prd)
                graph.mark_prd_dirty(prd.id)
            pending.append(("task.created", task.id, {"title": task.title}))
        logger.info("Created task {}: {}", task.id, task.title)
        return task

    def update_task(
        self,
        task_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        details: Optional[str] = None,
        test_strategy: Optional[str] = None,
        priority: Any = None,
        dependencies: Optional[Iterable[Any]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Task:
        """Apply a partial update; ``None`` leaves a field alone.

        *dependencies* replaces the whole list.  Dropped edges go first and
        new ones go through :meth:`TaskGraph.add_dependency`, so a cycle or
        unknown id rejects the whole update.  Status changes belong to
        :meth:`set_status`.
        """
        level = parse_priority(priority) if priority is not None else None
        with self._mutation() as (graph, pending):
            task = graph.require_task(task_id)
            fields: list[str] = []
            for name, value in (
                ("title", title),
                ("description", description),
                ("details", details),
                ("test_strategy", test_strategy),
                ("priority", level),
            ):
                if value is not None and getattr(task, name) != value:
                    setattr(task, name, value)
                    fields.append(name)
            if metadata is not None and task.metadata != metadata:
                task.metadata = dict(metadata)
                fields.append("metadata")

            if dependencies is not None:
                wanted = list(dict.fromkeys(normalize_id(d) for d in dependencies))
                before = list(task.dependencies)
                for dep in dict.fromkeys(before):
                    if dep not in wanted:
                        graph.remove_dependency(task.id, dep)
                for dep in wanted:
                    graph.add_dependency(task.id, dep)
                if task.dependencies != before:
                    fields.append("dependencies")

            if fields:
                task.touch()
                graph.mark_task_dirty(task.id)
                pending.append(("task.updated", task.id, {"fields": fields}))
        return task

    def delete_task(self, task_id: str) -> list[str]:
        """Delete a task together with its subtasks.

        Dependents lose their edges to the deleted tasks and PRDs drop the
        links, then the affected PRDs are resynced.  Returns the deleted ids.
        """
        with self._mutation() as (graph, pending):
            task = graph.require_task(task_id)
            doomed = [task.id] + graph.subtasks_of(task.id)
            owners: dict[str, PRD] = {}
            for tid in doomed:
                for prd in graph.prds_for_task(tid):
                    owners[prd.id] = prd
            for tid in reversed(doomed):
                detached = graph.remove_task(tid)
                pending.append(("task.deleted", tid, {"detached": detached}))
            for prd in owners.values():
                result = self.prd_sync.resync(graph, prd)
                if result.previous_status != result.status:
                    pending.append((
                        "prd.status_changed",
                        result.prd_id,
                        {"from": result.previous_status.value, "to": result.status.value},
                    ))
        logger.info("Deleted task {} and {} subtask(s)", doomed[0], len(doomed) - 1)
        return doomed

    def set_status(self, task_id: str, status: Any) -> StatusChange:
        with self._mutation() as (graph, pending):
            change = self.state_machine.apply(graph, task_id, status)
            self._queue_status_events(pending, change)
        return change

    def set_statuses(self, task_ids: Iterable[str], status: Any) -> list[StatusChange]:
        """Apply one status to several tasks in a single commit; all or nothing."""
        with self._mutation() as (graph, pending):
            changes = self.state_machine.apply_many(graph, task_ids, status)
            for change in changes:
                self._queue_status_events(pending, change)
        return changes

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    def add_dependency(self, task_id: str, depends_on_id: str) -> bool:
        try:
            with self._mutation() as (graph, pending):
                added = graph.add_dependency(task_id, depends_on_id)
                if added:
                    pending.append((
                        "dependency.added",
                        normalize_id(task_id),
                        {"depends_on": normalize_id(depends_on_id)},
                    ))
        except (CycleError, SelfDependencyError) as exc:
            logger.warning("Rejected dependency {} -> {}: {}", task_id, depends_on_id, exc)
            raise
        return added

    def remove_dependency(self, task_id: str, depends_on_id: str) -> bool:
        with self._mutation() as (graph, pending):
            graph.require_task(task_id)
            removed = graph.remove_dependency(task_id, depends_on_id)
            if removed:
                pending.append((
                    "dependency.removed",
                    normalize_id(task_id),
                    {"depends_on": normalize_id(depends_on_id)},
                ))
        return removed

    def validate_dependencies(self) -> list[validator.Issue]:
        return validator.validate(self.snapshot())

    def fix_dependencies(self) -> validator.FixReport:
        """Repair the stored graph.  The result is validated before it is committed."""
        with self._mutation() as (graph, pending):
            report = validator.fix(graph)
            remaining = validator.validate(graph)
            if remaining:
                raise FixConvergenceError(
                    f"{len(remaining)} issue(s) remain after repair: "
                    + "; ".join(issue.message for issue in remaining)
                )
            if report.changed:
                pending.append((
                    "dependencies.fixed",
                    "board",
                    {"removed_edges": [list(edge) for edge in report.removed_edges]},
                ))
        return report

    def execution_order(self) -> list[str]:
        return self.snapshot().topological_order()

    def execution_batches(self) -> list[list[str]]:
        return self.snapshot().execution_batches()

    # ------------------------------------------------------------------
    # Selection and board
    # ------------------------------------------------------------------

    def next(self) -> selector.Selection:
        return selector.select_next(self.snapshot())

    def ready_tasks(self) -> list[Task]:
        return selector.ready_tasks(self.snapshot())

    def board(self) -> dict[str, Any]:
        """Tasks grouped by status, plus the pending tasks held back by inactive dependencies."""
        graph = self.snapshot()
        columns: dict[str, list[Task]] = {s.value: [] for s in TaskStatus}
        for task in sorted(graph, key=lambda t: id_sort_key(t.id)):
            columns[task.status.value].append(task)
        return {
            "columns": columns,
            "waiting_on_inactive": graph.waiting_on_inactive(),
            "total": len(graph),
        }

    # ------------------------------------------------------------------
    # PRDs
    # ------------------------------------------------------------------

    def list_prds(self, status: Optional[str] = None) -> list[PRD]:
        wanted = parse_prd_status(status) if status else None
        prds = [p for p in self.snapshot().prds if wanted is None or p.status == wanted]
        return sorted(prds, key=lambda p: id_sort_key(p.id))

    def get_prd(self, prd_id: str) -> PRD:
        return self.store.load_prd(prd_id)

    def create_prd(
        self,
        title: str,
        file_name: str = "",
        description: str = "",
        prd_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> PRD:
        with self._mutation() as (graph, pending):
            new_id = normalize_id(prd_id) if prd_id else _next_id(p.id for p in graph.prds)
            prd = PRD(
                id=new_id,
                title=title,
                file_name=file_name,
                description=description,
                metadata=dict(metadata or {}),
            )
            graph.add_prd(prd)
            pending.append(("prd.created", prd.id, {"title": prd.title}))
        logger.info("Created PRD {}: {}", prd.id, prd.title)
        return prd

    def update_prd(
        self,
        prd_id: str,
        title: Optional[str] = None,
        file_name: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> PRD:
        """Edit descriptive fields.  Status and stats stay derived from the tasks."""
        with self._mutation() as (graph, pending):
            prd = graph.require_prd(prd_id)
            fields: list[str] = []
            for name, value in (
                ("title", title),
                ("file_name", file_name),
                ("description", description),
                ("metadata", metadata),
            ):
                if value is not None and getattr(prd, name) != value:
                    setattr(prd, name, dict(value) if name == "metadata" else value)
                    fields.append(name)
            if fields:
                prd.touch()
                graph.mark_prd_dirty(prd.id)
                pending.append(("prd.updated", prd.id, {"fields": fields}))
        return prd

    def delete_prd(self, prd_id: str) -> list[str]:
        """Delete a PRD; its tasks are kept and lose their owner.  Returns those task ids."""
        with self._mutation() as (graph, pending):
            prd = graph.require_prd(prd_id)
            orphaned = graph.remove_prd(prd.id)
            pending.append(("prd.deleted", prd.id, {"orphaned_tasks": orphaned}))
        logger.info("Deleted PRD {}", prd.id)
        return orphaned

    def link_task_to_prd(self, prd_id: str, task_id: str) -> SyncResult:
        """Link *task_id* to the PRD and resync it.

        A task without a ``prd_id`` adopts this PRD as its owner.
        """
        with self._mutation() as (graph, pending):
            prd = graph.require_prd(prd_id)
            task = graph.require_task(task_id)
            if prd.link(task.id):
                graph.mark_prd_dirty(prd.id)
                pending.append(("prd.task_linked", prd.id, {"task_id": task.id}))
            if task.prd_id is None:
                task.prd_id = prd.id
                task.touch()
                graph.mark_task_dirty(task.id)
            result = self.prd_sync.resync(graph, prd)
        return result

    def mark_prd_done(self, prd_id: str) -> CascadeResult:
        with self._mutation() as (graph, pending):
            prd = graph.require_prd(prd_id)
            previous = prd.status
            result = self.prd_sync.cascade_done(graph, prd)
            # Other PRDs may share the tasks that were just forced to done.
            for other in graph.prds:
                if other.id != prd.id and any(tid in other.linked_tasks for tid in result.updated_task_ids):
                    self.prd_sync.resync(graph, other)
            for tid in result.updated_task_ids:
                pending.append(("task.status_changed", tid, {"to": TaskStatus.DONE.value, "cascade": prd.id}))
            if previous != PRDStatus.DONE:
                pending.append(("prd.status_changed", prd.id, {"from": previous.value, "to": PRDStatus.DONE.value}))
        return result

    def resync_prd(self, prd_id: str) -> SyncResult:
        with self._mutation() as (graph, pending):
            result = self.prd_sync.resync(graph, graph.require_prd(prd_id))
            if result.previous_status != result.status:
                pending.append((
                    "prd.status_changed",
                    result.prd_id,
                    {"from": result.previous_status.value, "to": result.status.value},
                ))
        return result

    def resync_all(self) -> ResyncSummary:
        with self._mutation() as (graph, pending):
            summary = self.prd_sync.resync_all(graph)
            for result in summary.results:
                if result.previous_status != result.status:
                    pending.append((
                        "prd.status_changed",
                        result.prd_id,
                        {"from": result.previous_status.value, "to": result.status.value},
                    ))
        return summary

    def archive_prd(self, prd_id: str) -> PRD:
        with self._mutation() as (graph, pending):
            prd = graph.require_prd(prd_id)
            was_archived = prd.status == PRDStatus.ARCHIVED
            self.prd_sync.archive(graph, prd)
            if not was_archived:
                pending.append(("prd.archived", prd.id, {}))
        return prd

    def restore_prd(self, prd_id: str) -> PRD:
        with self._mutation() as (graph, pending):
            prd = self.prd_sync.restore(graph, graph.require_prd(prd_id))
            pending.append(("prd.restored", prd.id, {"status": prd.status.value}))
        return prd

    def check_links(self) -> list[LinkIssue]:
        return self.prd_sync.check_links(self.snapshot())

    def repair_links(self) -> LinkRepairReport:
        with self._mutation() as (graph, pending):
            report = self.prd_sync.repair_links(graph)
            if report.linked or report.unlinked:
                pending.append(("prd.links_repaired", "board", {
                    "linked": len(report.linked),
                    "unlinked": len(report.unlinked),
                }))
        return report
