"""Task API endpoints.

This module provides a FastAPI router for task CRUD, status transitions,
dependency management and validation, next-task selection and board views.
It is mounted under ``/api/tasks`` by the main ``create_app`` factory.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from .errors import engine_errors


# ---------------------------------------------------------------------------
# Pydantic request / response models
# ---------------------------------------------------------------------------

class CreateTaskRequest(BaseModel):
    title: str
    description: str = ""
    details: str = ""
    test_strategy: str = ""
    priority: str = "medium"
    dependencies: list[str] = Field(default_factory=list)
    parent_id: Optional[str] = None
    prd_id: Optional[str] = None
    task_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class UpdateTaskRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    details: Optional[str] = None
    test_strategy: Optional[str] = None
    priority: Optional[str] = None
    dependencies: Optional[list[str]] = None
    metadata: Optional[dict[str, Any]] = None


class StatusRequest(BaseModel):
    status: str


class BulkStatusRequest(BaseModel):
    task_ids: list[str]
    status: str


class AddDependencyRequest(BaseModel):
    depends_on: str


class TaskResponse(BaseModel):
    """Standard wrapper for task responses."""
    task: dict[str, Any]


class TaskListResponse(BaseModel):
    tasks: list[dict[str, Any]]
    total: int


class StatusChangeResponse(BaseModel):
    task: dict[str, Any]
    previous_status: str
    status: str
    changed: bool
    unblocked: list[str]
    affected_prd: Optional[dict[str, Any]] = None
    prd_updates: list[dict[str, Any]] = Field(default_factory=list)


class DeleteTaskResponse(BaseModel):
    status: str
    deleted: list[str]


class StateMachineResponse(BaseModel):
    states: list[str]
    transitions: dict[str, list[str]]


class ValidationResponse(BaseModel):
    valid: bool
    issues: list[dict[str, Any]]


class FixResponse(BaseModel):
    changed: bool
    removed_edges: list[dict[str, str]]
    repaired: list[dict[str, Any]]
    cycle_iterations: int


class NextTaskResponse(BaseModel):
    task: Optional[dict[str, Any]] = None
    reason: Optional[str] = None
    message: Optional[str] = None
    candidates: int = 0


class ExecutionOrderResponse(BaseModel):
    order: list[str]
    batches: list[list[str]]


class BoardResponse(BaseModel):
    columns: dict[str, list[dict[str, Any]]]
    waiting_on_inactive: dict[str, list[str]]
    total: int


# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------

def create_task_router(get_engine: Any) -> APIRouter:
    """Create the task API router.

    Parameters
    ----------
    get_engine:
        A callable ``(project_dir_param: str | None) -> ConsistencyService``
        that resolves the service for the current request's project directory.
    """
    router = APIRouter(prefix="/api/tasks", tags=["tasks"])

    # ------------------------------------------------------------------
    # Collection
    # ------------------------------------------------------------------

    @router.get("", response_model=TaskListResponse)
    async def list_tasks(
        project_dir: Optional[str] = Query(None),
        status: Optional[str] = Query(None),
        prd_id: Optional[str] = Query(None),
        include_subtasks: bool = Query(True),
    ) -> TaskListResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            tasks = engine.list_tasks(status=status, prd_id=prd_id, include_subtasks=include_subtasks)
        data = [t.to_dict() for t in tasks]
        return TaskListResponse(tasks=data, total=len(data))

    @router.post("", response_model=TaskResponse, status_code=201)
    async def create_task(
        body: CreateTaskRequest,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            task = engine.create_task(**body.model_dump())
        return TaskResponse(task=task.to_dict())

    @router.post("/status", response_model=list[StatusChangeResponse])
    async def set_statuses(
        body: BulkStatusRequest,
        project_dir: Optional[str] = Query(None),
    ) -> list[StatusChangeResponse]:
        engine = get_engine(project_dir)
        with engine_errors():
            changes = engine.set_statuses(body.task_ids, body.status)
        return [StatusChangeResponse(**c.to_dict()) for c in changes]

    @router.get("/next", response_model=NextTaskResponse)
    async def next_task(
        project_dir: Optional[str] = Query(None),
    ) -> NextTaskResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            selection = engine.next()
        return NextTaskResponse(**selection.to_dict())

    @router.get("/ready", response_model=TaskListResponse)
    async def ready_tasks(
        project_dir: Optional[str] = Query(None),
    ) -> TaskListResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            tasks = engine.ready_tasks()
        data = [t.to_dict() for t in tasks]
        return TaskListResponse(tasks=data, total=len(data))

    @router.get("/execution-order", response_model=ExecutionOrderResponse)
    async def execution_order(
        project_dir: Optional[str] = Query(None),
    ) -> ExecutionOrderResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            order = engine.execution_order()
            batches = engine.execution_batches()
        return ExecutionOrderResponse(order=order, batches=batches)

    @router.get("/board", response_model=BoardResponse)
    async def get_board(
        project_dir: Optional[str] = Query(None),
    ) -> BoardResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            board = engine.board()
        return BoardResponse(
            columns={name: [t.to_dict() for t in tasks] for name, tasks in board["columns"].items()},
            waiting_on_inactive=board["waiting_on_inactive"],
            total=board["total"],
        )

    @router.get("/meta/state-machine", response_model=StateMachineResponse)
    async def get_state_machine(
        project_dir: Optional[str] = Query(None),
    ) -> StateMachineResponse:
        engine = get_engine(project_dir)
        machine = engine.state_machine
        return StateMachineResponse(states=machine.states(), transitions=machine.transitions())

    # ------------------------------------------------------------------
    # Dependency validation
    # ------------------------------------------------------------------

    @router.get("/dependencies/validate", response_model=ValidationResponse)
    async def validate_dependencies(
        project_dir: Optional[str] = Query(None),
    ) -> ValidationResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            issues = engine.validate_dependencies()
        return ValidationResponse(valid=not issues, issues=[issue.to_dict() for issue in issues])

    @router.post("/dependencies/fix", response_model=FixResponse)
    async def fix_dependencies(
        project_dir: Optional[str] = Query(None),
    ) -> FixResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            report = engine.fix_dependencies()
        return FixResponse(**report.to_dict())

    # ------------------------------------------------------------------
    # Single task
    # ------------------------------------------------------------------

    @router.get("/{task_id}", response_model=TaskResponse)
    async def get_task(
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            task = engine.get_task(task_id)
        return TaskResponse(task=task.to_dict())

    @router.patch("/{task_id}", response_model=TaskResponse)
    async def update_task(
        task_id: str,
        body: UpdateTaskRequest,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            task = engine.update_task(task_id, **body.model_dump())
        return TaskResponse(task=task.to_dict())

    @router.delete("/{task_id}", response_model=DeleteTaskResponse)
    async def delete_task(
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> DeleteTaskResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            deleted = engine.delete_task(task_id)
        return DeleteTaskResponse(status="deleted", deleted=deleted)

    @router.post("/{task_id}/status", response_model=StatusChangeResponse)
    async def set_status(
        task_id: str,
        body: StatusRequest,
        project_dir: Optional[str] = Query(None),
    ) -> StatusChangeResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            change = engine.set_status(task_id, body.status)
        return StatusChangeResponse(**change.to_dict())

    @router.post("/{task_id}/dependencies")
    async def add_dependency(
        task_id: str,
        body: AddDependencyRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        with engine_errors():
            added = engine.add_dependency(task_id, body.depends_on)
        return {"status": "ok", "added": added}

    @router.delete("/{task_id}/dependencies/{dep_id}")
    async def remove_dependency(
        task_id: str,
        dep_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        with engine_errors():
            removed = engine.remove_dependency(task_id, dep_id)
        return {"status": "ok", "removed": removed}

    return router
