"""Structural validation and deterministic repair of the dependency graph.

:func:`validate` runs independent passes and reports every finding as an
itemized issue so callers can render one line per problem.  :func:`fix`
repairs the graph by removing edges only, in a fixed order, so that running
it twice converges to the same graph.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

from loguru import logger

from ..utils import id_sort_key
from .errors import FixConvergenceError
from .graph import Edge, TaskGraph


# ---------------------------------------------------------------------------
# Issues
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DanglingReference:
    kind: ClassVar[str] = "dangling_reference"
    task: str
    missing_id: str

    @property
    def message(self) -> str:
        return f"Task {self.task} depends on missing task {self.missing_id}"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "task": self.task, "missing_id": self.missing_id, "message": self.message}


@dataclass(frozen=True)
class SelfDependency:
    kind: ClassVar[str] = "self_dependency"
    task: str

    @property
    def message(self) -> str:
        return f"Task {self.task} depends on itself"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "task": self.task, "message": self.message}


@dataclass(frozen=True)
class DuplicateDependency:
    kind: ClassVar[str] = "duplicate_dependency"
    task: str
    depends_on: str

    @property
    def message(self) -> str:
        return f"Task {self.task} lists dependency {self.depends_on} more than once"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "task": self.task, "depends_on": self.depends_on, "message": self.message}


@dataclass(frozen=True)
class Cycle:
    kind: ClassVar[str] = "cycle"
    path: tuple[str, ...]

    @property
    def message(self) -> str:
        return f"Dependency cycle: {' -> '.join(self.path)}"

    def edges(self) -> list[Edge]:
        return list(zip(self.path, self.path[1:]))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "path": list(self.path), "message": self.message}


Issue = Union[DanglingReference, SelfDependency, DuplicateDependency, Cycle]


@dataclass
class FixReport:
    """Audit trail of one :func:`fix` run."""

    removed_edges: list[Edge] = field(default_factory=list)
    repaired: list[Issue] = field(default_factory=list)
    cycle_iterations: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.removed_edges)

    def to_dict(self) -> dict[str, Any]:
        return {
            "changed": self.changed,
            "removed_edges": [{"task": t, "depends_on": d} for t, d in self.removed_edges],
            "repaired": [issue.to_dict() for issue in self.repaired],
            "cycle_iterations": self.cycle_iterations,
        }


# ---------------------------------------------------------------------------
# Passes
# ---------------------------------------------------------------------------

def find_dangling(graph: TaskGraph) -> list[DanglingReference]:
    issues: list[DanglingReference] = []
    for task in graph:
        for dep in dict.fromkeys(task.dependencies):
            if dep != task.id and dep not in graph:
                issues.append(DanglingReference(task.id, dep))
    return issues


def find_self_dependencies(graph: TaskGraph) -> list[SelfDependency]:
    return [SelfDependency(task.id) for task in graph if task.id in task.dependencies]


def find_duplicates(graph: TaskGraph) -> list[DuplicateDependency]:
    issues: list[DuplicateDependency] = []
    for task in graph:
        seen: set[str] = set()
        for dep in task.dependencies:
            if dep in seen:
                issues.append(DuplicateDependency(task.id, dep))
            seen.add(dep)
    return issues


_WHITE, _GRAY, _BLACK = 0, 1, 2


def find_cycles(graph: TaskGraph) -> list[Cycle]:
    """Three-color depth-first search over the whole graph.

    Every back-edge yields one :class:`Cycle` whose path starts at the node
    the back-edge points to and returns to it.  Self-edges and dangling
    edges are skipped.  The walk is iterative, so deep chains do not hit
    the interpreter recursion limit.
    """
    color: dict[str, int] = {task.id: _WHITE for task in graph}
    adjacency: dict[str, list[str]] = {
        task.id: [d for d in dict.fromkeys(task.dependencies) if d != task.id and d in color]
        for task in graph
    }
    cycles: list[Cycle] = []

    for root in graph:
        if color[root.id] != _WHITE:
            continue
        color[root.id] = _GRAY
        path: list[str] = [root.id]
        on_path: dict[str, int] = {root.id: 0}
        stack: list[tuple[str, int]] = [(root.id, 0)]

        while stack:
            node_id, next_index = stack[-1]
            deps = adjacency[node_id]
            if next_index >= len(deps):
                stack.pop()
                path.pop()
                del on_path[node_id]
                color[node_id] = _BLACK
                continue
            stack[-1] = (node_id, next_index + 1)
            dep = deps[next_index]
            if color[dep] == _GRAY:
                start = on_path[dep]
                cycles.append(Cycle(tuple(path[start:]) + (dep,)))
            elif color[dep] == _WHITE:
                color[dep] = _GRAY
                on_path[dep] = len(path)
                path.append(dep)
                stack.append((dep, 0))

    return cycles


def validate(graph: TaskGraph) -> list[Issue]:
    """Run every pass and return all findings; never stops at the first."""
    issues: list[Issue] = []
    issues.extend(find_dangling(graph))
    issues.extend(find_self_dependencies(graph))
    issues.extend(find_cycles(graph))
    issues.extend(find_duplicates(graph))
    return issues


# ---------------------------------------------------------------------------
# Repair
# ---------------------------------------------------------------------------

def _edge_to_break(cycle: Cycle) -> Edge:
    # Largest depends_on id wins; ties go to the largest task id.
    return max(cycle.edges(), key=lambda edge: (id_sort_key(edge[1]), id_sort_key(edge[0])))


def _remove_all_copies(
    graph: TaskGraph,
    report: FixReport,
    issue: Issue,
    task_id: str,
    depends_on: str,
) -> None:
    # Every stored copy goes, so each one is reported; extra copies are
    # the duplicates validate() listed for the same edge.
    copies = graph.require_task(task_id).dependencies.count(depends_on)
    graph.remove_dependency(task_id, depends_on)
    report.removed_edges.extend([(task_id, depends_on)] * copies)
    report.repaired.append(issue)
    report.repaired.extend(DuplicateDependency(task_id, depends_on) for _ in range(copies - 1))


def fix(graph: TaskGraph) -> FixReport:
    """Repair *graph* in place by removing edges; tasks are never deleted.

    Order: self-dependencies, dangling references, duplicate edges, then
    cycles one edge at a time until none remain.

    Raises:
        FixConvergenceError: cycles remain after as many removals as there
            were edges when cycle repair started.
    """
    report = FixReport()

    for issue in find_self_dependencies(graph):
        _remove_all_copies(graph, report, issue, issue.task, issue.task)
        logger.debug("Removed self-dependency on task {}", issue.task)

    for issue in find_dangling(graph):
        _remove_all_copies(graph, report, issue, issue.task, issue.missing_id)
        logger.debug("Removed dangling dependency {} -> {}", issue.task, issue.missing_id)

    duplicates = find_duplicates(graph)
    for issue in duplicates:
        # One issue per extra copy; the first occurrence is kept.
        report.removed_edges.append((issue.task, issue.depends_on))
        report.repaired.append(issue)
    for task_id in dict.fromkeys(issue.task for issue in duplicates):
        graph.dedupe_dependencies(task_id)

    budget = graph.edge_count()
    while True:
        cycles = find_cycles(graph)
        if not cycles:
            break
        if report.cycle_iterations >= budget:
            raise FixConvergenceError(
                f"Cycle repair did not converge after {report.cycle_iterations} edge removals; "
                f"{len(cycles)} cycle(s) remain"
            )
        cycle = cycles[0]
        task_id, depends_on = _edge_to_break(cycle)
        graph.remove_dependency(task_id, depends_on)
        report.removed_edges.append((task_id, depends_on))
        report.repaired.append(cycle)
        report.cycle_iterations += 1
        logger.debug("Broke cycle {} by removing {} -> {}", " -> ".join(cycle.path), task_id, depends_on)

    if report.changed:
        logger.info(
            "Dependency fix removed {} edge(s) and repaired {} issue(s)",
            len(report.removed_edges),
            len(report.repaired),
        )
    return report
