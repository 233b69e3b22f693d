"""Task and PRD records shared by the CLI, the REST API and the board UIs.

Both records serialize to plain dicts for the YAML store.  Status and
priority are closed enumerations; string values coming from the outside are
converted with :func:`parse_status` / :func:`parse_priority` at the boundary.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional

from ..utils import _now_iso, normalize_id
from .errors import InvalidStatusError


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskStatus(str, Enum):
    """Workflow status of a task.  Every status may move to every other."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    REVIEW = "review"
    BLOCKED = "blocked"
    DEFERRED = "deferred"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def sort_key(self) -> int:
        """0 is most urgent."""
        return {"critical": 0, "high": 1, "medium": 2, "low": 3}[self.value]


class PRDStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    ARCHIVED = "archived"


def parse_status(value: Any) -> TaskStatus:
    if isinstance(value, TaskStatus):
        return value
    raw = str(value).strip().lower()
    try:
        return TaskStatus(raw)
    except ValueError:
        raise InvalidStatusError(raw, [s.value for s in TaskStatus]) from None


def parse_prd_status(value: Any) -> PRDStatus:
    if isinstance(value, PRDStatus):
        return value
    raw = str(value).strip().lower()
    try:
        return PRDStatus(raw)
    except ValueError:
        raise InvalidStatusError(raw, [s.value for s in PRDStatus]) from None


def parse_priority(value: Any) -> TaskPriority:
    if isinstance(value, TaskPriority):
        return value
    raw = str(value).strip().lower()
    try:
        return TaskPriority(raw)
    except ValueError:
        raise ValueError(
            f"Invalid priority '{raw}'. Valid priorities: {', '.join(p.value for p in TaskPriority)}"
        ) from None


def _enum_or_default(enum_cls: type[Enum], raw: Any, default: Enum) -> Any:
    if raw is None:
        return default
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(str(raw))
    except ValueError:
        return default


def _id_list(raw: Any) -> list[str]:
    return [normalize_id(item) for item in (raw or [])]


def _optional_id(raw: Any) -> Optional[str]:
    if raw is None or raw == "":
        return None
    return normalize_id(raw)


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------

@dataclass
class Task:
    """An atomic unit of work.

    Subtasks are ordinary tasks with ``parent_id`` set; by convention their id
    is ``<parent_id>.<index>``.
    """

    id: str
    title: str = ""
    description: str = ""
    details: str = ""
    test_strategy: str = ""
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM

    # Ordered ids of tasks that must be done before this one may start
    dependencies: list[str] = field(default_factory=list)

    parent_id: Optional[str] = None
    prd_id: Optional[str] = None

    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    completed_at: Optional[str] = None

    metadata: dict[str, Any] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict for YAML/JSON persistence."""
        data: dict[str, Any] = {}
        for k, v in asdict(self).items():
            data[k] = v.value if isinstance(v, Enum) else v
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Deserialize from a plain dict, coercing enums gracefully."""
        d = dict(data)
        return cls(
            id=normalize_id(d.get("id", "")),
            title=str(d.get("title") or ""),
            description=str(d.get("description") or ""),
            details=str(d.get("details") or ""),
            test_strategy=str(d.get("test_strategy") or ""),
            status=_enum_or_default(TaskStatus, d.get("status"), TaskStatus.PENDING),
            priority=_enum_or_default(TaskPriority, d.get("priority"), TaskPriority.MEDIUM),
            dependencies=_id_list(d.get("dependencies")),
            parent_id=_optional_id(d.get("parent_id")),
            prd_id=_optional_id(d.get("prd_id")),
            created_at=str(d.get("created_at") or _now_iso()),
            updated_at=str(d.get("updated_at") or _now_iso()),
            completed_at=d.get("completed_at"),
            metadata=dict(d.get("metadata") or {}),
        )

    # ------------------------------------------------------------------
    # Status helpers
    # ------------------------------------------------------------------

    def touch(self) -> None:
        """Bump ``updated_at`` to now."""
        self.updated_at = _now_iso()

    def transition(self, new_status: TaskStatus) -> None:
        """Move to *new_status* with timestamp bookkeeping."""
        self.status = new_status
        if new_status == TaskStatus.DONE:
            self.completed_at = _now_iso()
        else:
            self.completed_at = None
        self.touch()

    @property
    def is_subtask(self) -> bool:
        return self.parent_id is not None

    @property
    def is_inactive(self) -> bool:
        """Cancelled or deferred: never selected, yet still a dependency target."""
        return self.status in (TaskStatus.CANCELLED, TaskStatus.DEFERRED)


# ---------------------------------------------------------------------------
# PRD
# ---------------------------------------------------------------------------

def completion_percentage(completed: int, total: int) -> int:
    """``round(completed / total * 100)`` with halves rounded up; 0 for no tasks."""
    if total <= 0:
        return 0
    return (200 * completed + total) // (2 * total)


@dataclass
class TaskStats:
    total: int = 0
    completed: int = 0
    pending: int = 0
    in_progress: int = 0
    completion_percentage: int = 0

    @classmethod
    def from_statuses(cls, statuses: list[TaskStatus]) -> "TaskStats":
        total = len(statuses)
        completed = sum(1 for s in statuses if s == TaskStatus.DONE)
        return cls(
            total=total,
            completed=completed,
            pending=sum(1 for s in statuses if s == TaskStatus.PENDING),
            in_progress=sum(1 for s in statuses if s == TaskStatus.IN_PROGRESS),
            completion_percentage=completion_percentage(completed, total),
        )

    @classmethod
    def from_dict(cls, data: Any) -> "TaskStats":
        if not isinstance(data, dict):
            return cls()
        return cls(
            total=int(data.get("total", 0) or 0),
            completed=int(data.get("completed", 0) or 0),
            pending=int(data.get("pending", 0) or 0),
            in_progress=int(data.get("in_progress", 0) or 0),
            completion_percentage=int(data.get("completion_percentage", 0) or 0),
        )

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class PRD:
    """A requirements document and the tasks generated from it.

    ``status`` and ``task_stats`` are derived from the linked tasks by
    :class:`~task_hero.engine.prd_sync.PRDSyncEngine`; only archiving and the
    explicit done cascade set the status directly.
    """

    id: str
    title: str = ""
    file_name: str = ""
    description: str = ""
    status: PRDStatus = PRDStatus.PENDING
    linked_tasks: list[str] = field(default_factory=list)
    task_stats: TaskStats = field(default_factory=TaskStats)
    created_at: str = field(default_factory=_now_iso)
    last_modified: str = field(default_factory=_now_iso)
    status_updated_at: Optional[str] = None
    status_update_reason: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for k, v in asdict(self).items():
            data[k] = v.value if isinstance(v, Enum) else v
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PRD":
        d = dict(data)
        return cls(
            id=normalize_id(d.get("id", "")),
            title=str(d.get("title") or ""),
            file_name=str(d.get("file_name") or ""),
            description=str(d.get("description") or ""),
            status=_enum_or_default(PRDStatus, d.get("status"), PRDStatus.PENDING),
            linked_tasks=_id_list(d.get("linked_tasks")),
            task_stats=TaskStats.from_dict(d.get("task_stats")),
            created_at=str(d.get("created_at") or _now_iso()),
            last_modified=str(d.get("last_modified") or _now_iso()),
            status_updated_at=d.get("status_updated_at"),
            status_update_reason=d.get("status_update_reason"),
            metadata=dict(d.get("metadata") or {}),
        )

    def touch(self) -> None:
        self.last_modified = _now_iso()

    def set_status(self, status: PRDStatus, reason: str) -> None:
        self.status = status
        self.status_updated_at = _now_iso()
        self.status_update_reason = reason
        self.touch()

    def link(self, task_id: str) -> bool:
        if task_id in self.linked_tasks:
            return False
        self.linked_tasks.append(task_id)
        self.touch()
        return True

    def unlink(self, task_id: str) -> bool:
        if task_id not in self.linked_tasks:
            return False
        self.linked_tasks.remove(task_id)
        self.touch()
        return True
