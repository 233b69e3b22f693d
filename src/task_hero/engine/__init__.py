"""Task/PRD consistency engine.

This package holds the task graph, dependency validation and repair, status
transitions, PRD roll-up and cascade, next-task selection, and the
file-backed store the CLI and the REST API share.
"""

from __future__ import annotations

from .errors import (
    CycleError,
    FixConvergenceError,
    InvalidStatusError,
    NotFoundError,
    PersistenceError,
    SelfDependencyError,
    TaskHeroError,
)
from .graph import TaskGraph
from .model import PRD, PRDStatus, Task, TaskPriority, TaskStats, TaskStatus
from .service import ConsistencyService
from .store import TaskStore

__all__ = [
    "ConsistencyService",
    "CycleError",
    "FixConvergenceError",
    "InvalidStatusError",
    "NotFoundError",
    "PRD",
    "PRDStatus",
    "PersistenceError",
    "SelfDependencyError",
    "Task",
    "TaskGraph",
    "TaskHeroError",
    "TaskPriority",
    "TaskStats",
    "TaskStatus",
    "TaskStore",
]
