"""In-memory task graph: tasks, subtasks, dependency edges and PRD linkage.

A :class:`TaskGraph` is a snapshot loaded for one operation.  Edges live on
each task's ordered ``dependencies`` list (adjacency keyed by task id); an
edge ``(task, depends_on)`` means *depends_on must be done before task may
start*.  Mutations go through the graph so it can track which entities the
store has to write back.
"""

from __future__ import annotations

import heapq
from collections import deque
from typing import Iterable, Iterator, Optional

from loguru import logger

from ..utils import id_sort_key, normalize_id
from .errors import CycleError, NotFoundError, SelfDependencyError
from .model import PRD, Task, TaskStatus

Edge = tuple[str, str]


class TaskGraph:
    def __init__(self, tasks: Iterable[Task] = (), prds: Iterable[PRD] = ()) -> None:
        self._tasks: dict[str, Task] = {}
        self._prds: dict[str, PRD] = {}
        self._dirty_tasks: set[str] = set()
        self._dirty_prds: set[str] = set()
        for task in tasks:
            self.add_task(task)
        for prd in prds:
            self.add_prd(prd)
        # A freshly loaded snapshot has nothing to write back.
        self.clear_dirty()

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def __iter__(self) -> Iterator[Task]:
        return iter(self._tasks.values())

    @property
    def tasks(self) -> list[Task]:
        return list(self._tasks.values())

    @property
    def prds(self) -> list[PRD]:
        return list(self._prds.values())

    def get_task(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(normalize_id(task_id))

    def require_task(self, task_id: str) -> Task:
        task = self.get_task(task_id)
        if task is None:
            raise NotFoundError("task", normalize_id(task_id))
        return task

    def get_prd(self, prd_id: str) -> Optional[PRD]:
        return self._prds.get(normalize_id(prd_id))

    def require_prd(self, prd_id: str) -> PRD:
        prd = self.get_prd(prd_id)
        if prd is None:
            raise NotFoundError("prd", normalize_id(prd_id))
        return prd

    def add_task(self, task: Task) -> Task:
        if task.id in self._tasks:
            raise ValueError(f"Task {task.id} already exists")
        self._tasks[task.id] = task
        self._dirty_tasks.add(task.id)
        return task

    def add_prd(self, prd: PRD) -> PRD:
        if prd.id in self._prds:
            raise ValueError(f"PRD {prd.id} already exists")
        self._prds[prd.id] = prd
        self._dirty_prds.add(prd.id)
        return prd

    def remove_task(self, task_id: str) -> list[str]:
        """Delete *task_id* and detach it from the rest of the graph.

        Edges pointing at the task and PRD links to it are removed in the
        same step, so a deletion never leaves a dangling reference.  Returns
        the ids of tasks that lost a dependency edge.
        """
        task = self.require_task(task_id)
        del self._tasks[task.id]
        self._dirty_tasks.add(task.id)
        detached = [t.id for t in self._tasks.values() if self.remove_dependency(t.id, task.id)]
        for prd in self._prds.values():
            if prd.unlink(task.id):
                self._dirty_prds.add(prd.id)
        logger.debug("Removed task {} (detached {} dependent(s))", task.id, len(detached))
        return detached

    def remove_prd(self, prd_id: str) -> list[str]:
        """Delete *prd_id*; tasks it owned keep existing without an owner.

        Returns the ids of tasks whose ``prd_id`` was cleared.
        """
        prd = self.require_prd(prd_id)
        del self._prds[prd.id]
        self._dirty_prds.add(prd.id)
        orphaned: list[str] = []
        for task in self._tasks.values():
            if task.prd_id == prd.id:
                task.prd_id = None
                task.touch()
                self._dirty_tasks.add(task.id)
                orphaned.append(task.id)
        return orphaned

    # ------------------------------------------------------------------
    # Dirty tracking
    # ------------------------------------------------------------------

    def mark_task_dirty(self, task_id: str) -> None:
        self._dirty_tasks.add(task_id)

    def mark_prd_dirty(self, prd_id: str) -> None:
        self._dirty_prds.add(prd_id)

    @property
    def dirty_task_ids(self) -> set[str]:
        return set(self._dirty_tasks)

    @property
    def dirty_prd_ids(self) -> set[str]:
        return set(self._dirty_prds)

    @property
    def is_dirty(self) -> bool:
        return bool(self._dirty_tasks or self._dirty_prds)

    def clear_dirty(self) -> None:
        self._dirty_tasks.clear()
        self._dirty_prds.clear()

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def dependencies_of(self, task_id: str) -> list[str]:
        """Direct dependencies of *task_id*, in insertion order, without duplicates."""
        task = self.require_task(task_id)
        return list(dict.fromkeys(task.dependencies))

    def dependents_of(self, task_id: str) -> list[str]:
        """Ids of tasks that directly depend on *task_id*, in task order."""
        task_id = normalize_id(task_id)
        self.require_task(task_id)
        return [t.id for t in self._tasks.values() if task_id in t.dependencies]

    def edges(self) -> list[Edge]:
        """Every stored edge, duplicates and broken edges included."""
        return [(t.id, dep) for t in self._tasks.values() for dep in t.dependencies]

    def edge_count(self) -> int:
        return sum(len(t.dependencies) for t in self._tasks.values())

    def find_path(self, start_id: str, goal_id: str) -> Optional[list[str]]:
        """Shortest walk along dependency edges from *start_id* to *goal_id*."""
        parents: dict[str, Optional[str]] = {start_id: None}
        queue: deque[str] = deque([start_id])
        while queue:
            current = queue.popleft()
            if current == goal_id:
                path = [current]
                while parents[path[-1]] is not None:
                    path.append(parents[path[-1]])  # type: ignore[arg-type]
                return list(reversed(path))
            node = self._tasks.get(current)
            if node is None:
                continue
            for dep in node.dependencies:
                if dep not in parents:
                    parents[dep] = current
                    queue.append(dep)
        return None

    def add_dependency(self, task_id: str, depends_on_id: str) -> bool:
        """Add the edge ``task_id -> depends_on_id``.

        Checks run before any mutation, so a failed call leaves the graph
        untouched.  Returns False when the edge already exists.

        Raises:
            SelfDependencyError: the two ids are equal.
            NotFoundError: either id is not a task in this graph.
            CycleError: ``depends_on_id`` already (transitively) depends on
                ``task_id``; ``path`` runs from ``depends_on_id`` to
                ``task_id`` and back.
        """
        task_id = normalize_id(task_id)
        depends_on_id = normalize_id(depends_on_id)
        if task_id == depends_on_id:
            raise SelfDependencyError(task_id)
        task = self.require_task(task_id)
        self.require_task(depends_on_id)

        path = self.find_path(depends_on_id, task_id)
        if path is not None:
            raise CycleError(path + [depends_on_id])

        if depends_on_id in task.dependencies:
            return False
        task.dependencies.append(depends_on_id)
        task.touch()
        self.mark_task_dirty(task_id)
        logger.debug("Added dependency {} -> {}", task_id, depends_on_id)
        return True

    def remove_dependency(self, task_id: str, depends_on_id: str) -> bool:
        """Remove every copy of the edge.  Idempotent; returns whether anything changed."""
        task = self.get_task(task_id)
        depends_on_id = normalize_id(depends_on_id)
        if task is None or depends_on_id not in task.dependencies:
            return False
        task.dependencies = [d for d in task.dependencies if d != depends_on_id]
        task.touch()
        self.mark_task_dirty(task.id)
        logger.debug("Removed dependency {} -> {}", task.id, depends_on_id)
        return True

    def dedupe_dependencies(self, task_id: str) -> list[str]:
        task = self.require_task(task_id)
        seen: set[str] = set()
        kept: list[str] = []
        dropped: list[str] = []
        for dep in task.dependencies:
            if dep in seen:
                dropped.append(dep)
            else:
                seen.add(dep)
                kept.append(dep)
        if dropped:
            task.dependencies = kept
            task.touch()
            self.mark_task_dirty(task.id)
        return dropped

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    def _valid_dependencies(self, task: Task, within: Optional[set[str]] = None) -> set[str]:
        scope = self._tasks if within is None else within
        return {d for d in task.dependencies if d != task.id and d in scope}

    def topological_order(self) -> list[str]:
        """Order every task after all of its dependencies (Kahn's algorithm).

        Ties resolve by natural id order.  Self-edges and dangling edges are
        ignored here; the validator reports those separately.

        Raises:
            CycleError: with one cycle from the graph.
        """
        in_degree: dict[str, int] = {}
        dependents: dict[str, list[str]] = {tid: [] for tid in self._tasks}
        for task in self._tasks.values():
            deps = self._valid_dependencies(task)
            in_degree[task.id] = len(deps)
            for dep in deps:
                dependents[dep].append(task.id)

        heap = [(id_sort_key(tid), tid) for tid, deg in in_degree.items() if deg == 0]
        heapq.heapify(heap)
        order: list[str] = []
        while heap:
            _, tid = heapq.heappop(heap)
            order.append(tid)
            for dependent in dependents[tid]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(heap, (id_sort_key(dependent), dependent))

        if len(order) < len(self._tasks):
            remaining = {tid for tid, deg in in_degree.items() if deg > 0}
            raise CycleError(self._cycle_within(remaining))
        return order

    def _cycle_within(self, remaining: set[str]) -> list[str]:
        # Every node left over by Kahn's algorithm still has a dependency
        # inside the leftover set, so walking those edges must revisit a node.
        start = min(remaining, key=id_sort_key)
        walk: list[str] = []
        position: dict[str, int] = {}
        current = start
        while current not in position:
            position[current] = len(walk)
            walk.append(current)
            task = self._tasks[current]
            current = next(d for d in task.dependencies if d != current and d in remaining)
        return walk[position[current]:] + [current]

    def execution_batches(self) -> list[list[str]]:
        """Group open tasks into layers that can be worked on independently.

        Done and cancelled tasks are treated as satisfied.  Within a batch,
        tasks order by priority then natural id.  Tasks caught in a cycle
        are left out and logged.
        """
        open_tasks = {
            t.id: t for t in self._tasks.values()
            if t.status not in (TaskStatus.DONE, TaskStatus.CANCELLED)
        }
        scope = set(open_tasks)
        in_degree: dict[str, int] = {}
        dependents: dict[str, list[str]] = {tid: [] for tid in open_tasks}
        for task in open_tasks.values():
            deps = self._valid_dependencies(task, scope)
            in_degree[task.id] = len(deps)
            for dep in deps:
                dependents[dep].append(task.id)

        def _rank(tid: str) -> tuple:
            return (open_tasks[tid].priority.sort_key, id_sort_key(tid))

        batches: list[list[str]] = []
        queue = sorted((tid for tid, deg in in_degree.items() if deg == 0), key=_rank)
        while queue:
            batches.append(list(queue))
            next_queue: list[str] = []
            for tid in queue:
                for dependent in dependents[tid]:
                    in_degree[dependent] -= 1
                    if in_degree[dependent] == 0:
                        next_queue.append(dependent)
            queue = sorted(next_queue, key=_rank)

        stuck = sorted((tid for tid, deg in in_degree.items() if deg > 0), key=id_sort_key)
        if stuck:
            logger.warning("Dependency cycle detected among tasks: {}", stuck)
        return batches

    # ------------------------------------------------------------------
    # Hierarchy and PRD linkage
    # ------------------------------------------------------------------

    def subtasks_of(self, task_id: str, recursive: bool = True) -> list[str]:
        task_id = normalize_id(task_id)
        children: dict[str, list[str]] = {}
        for t in self._tasks.values():
            if t.parent_id is not None:
                children.setdefault(t.parent_id, []).append(t.id)
        if not recursive:
            return list(children.get(task_id, []))
        found: list[str] = []
        seen = {task_id}
        queue: deque[str] = deque(children.get(task_id, []))
        while queue:
            child = queue.popleft()
            if child in seen:
                continue
            seen.add(child)
            found.append(child)
            queue.extend(children.get(child, []))
        return found

    def tasks_for_prd(self, prd_id: str) -> list[str]:
        prd_id = normalize_id(prd_id)
        return [t.id for t in self._tasks.values() if t.prd_id == prd_id]

    def prds_for_task(self, task_id: str) -> list[PRD]:
        """PRDs that own *task_id*: its ``prd_id`` first, then any PRD linking it."""
        task = self.require_task(task_id)
        found: list[PRD] = []
        if task.prd_id is not None and task.prd_id in self._prds:
            found.append(self._prds[task.prd_id])
        for prd in self._prds.values():
            if task.id in prd.linked_tasks and prd not in found:
                found.append(prd)
        return found

    def waiting_on_inactive(self) -> dict[str, list[str]]:
        """Pending tasks held back by a cancelled or deferred dependency.

        Such dependents stay blocked until someone removes the edge.
        """
        stuck: dict[str, list[str]] = {}
        for task in self._tasks.values():
            if task.status != TaskStatus.PENDING:
                continue
            inactive = [
                dep for dep in dict.fromkeys(task.dependencies)
                if dep in self._tasks and self._tasks[dep].is_inactive
            ]
            if inactive:
                stuck[task.id] = inactive
        return stuck
