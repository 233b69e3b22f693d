"""Exceptions raised by the consistency engine and its store."""

from __future__ import annotations

from typing import Sequence


class TaskHeroError(Exception):
    """Base class for all engine errors."""


class NotFoundError(TaskHeroError):
    """A task or PRD id did not resolve."""

    def __init__(self, kind: str, entity_id: str) -> None:
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind.capitalize()} {entity_id} not found")


class SelfDependencyError(TaskHeroError):
    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task {task_id} cannot depend on itself")


class CycleError(TaskHeroError):
    """Raised when an edge (or the graph as a whole) forms a dependency cycle.

    ``path`` lists the ids around the cycle, first id repeated at the end.
    """

    def __init__(self, path: Sequence[str]) -> None:
        self.path = list(path)
        super().__init__(f"Dependency cycle detected: {' -> '.join(self.path)}")


class InvalidStatusError(TaskHeroError, ValueError):
    def __init__(self, value: str, valid: Sequence[str]) -> None:
        self.value = value
        self.valid = list(valid)
        super().__init__(f"Invalid status '{value}'. Valid statuses: {', '.join(self.valid)}")


class FixConvergenceError(TaskHeroError):
    """Cycle repair did not converge within its iteration budget."""


class PersistenceError(TaskHeroError):
    """The store could not read or write the board file."""
