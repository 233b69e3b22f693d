"""PRD API endpoints, mounted under ``/api/prds``."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from .errors import engine_errors


class CreatePRDRequest(BaseModel):
    title: str
    file_name: str = ""
    description: str = ""
    prd_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class UpdatePRDRequest(BaseModel):
    title: Optional[str] = None
    file_name: Optional[str] = None
    description: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class DeletePRDResponse(BaseModel):
    status: str
    orphaned_tasks: list[str]


class LinkTaskRequest(BaseModel):
    task_id: str


class PRDResponse(BaseModel):
    prd: dict[str, Any]


class PRDListResponse(BaseModel):
    prds: list[dict[str, Any]]
    total: int


class PRDDetailResponse(BaseModel):
    prd: dict[str, Any]
    tasks: list[dict[str, Any]]


class SyncResponse(BaseModel):
    prd_id: str
    previous_status: str
    status: str
    task_stats: dict[str, int]
    changed: bool


class ResyncAllResponse(BaseModel):
    processed: int
    updated: int
    unchanged: int
    results: list[SyncResponse]


class CascadeResponse(BaseModel):
    prd: dict[str, Any]
    tasks_updated: int
    updated_task_ids: list[str]


class LinkCheckResponse(BaseModel):
    valid: bool
    issues: list[dict[str, Any]]


class LinkRepairResponse(BaseModel):
    linked: list[dict[str, str]]
    unlinked: list[dict[str, str]]
    remaining: list[dict[str, Any]]


def create_prd_router(get_engine: Any) -> APIRouter:
    router = APIRouter(prefix="/api/prds", tags=["prds"])

    @router.get("", response_model=PRDListResponse)
    async def list_prds(
        project_dir: Optional[str] = Query(None),
        status: Optional[str] = Query(None),
    ) -> PRDListResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            prds = engine.list_prds(status=status)
        data = [p.to_dict() for p in prds]
        return PRDListResponse(prds=data, total=len(data))

    @router.post("", response_model=PRDResponse, status_code=201)
    async def create_prd(
        body: CreatePRDRequest,
        project_dir: Optional[str] = Query(None),
    ) -> PRDResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            prd = engine.create_prd(**body.model_dump())
        return PRDResponse(prd=prd.to_dict())

    @router.post("/resync", response_model=ResyncAllResponse)
    async def resync_all(
        project_dir: Optional[str] = Query(None),
    ) -> ResyncAllResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            summary = engine.resync_all()
        return ResyncAllResponse(**summary.to_dict())

    @router.get("/links/check", response_model=LinkCheckResponse)
    async def check_links(
        project_dir: Optional[str] = Query(None),
    ) -> LinkCheckResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            issues = engine.check_links()
        return LinkCheckResponse(valid=not issues, issues=[issue.to_dict() for issue in issues])

    @router.post("/links/repair", response_model=LinkRepairResponse)
    async def repair_links(
        project_dir: Optional[str] = Query(None),
    ) -> LinkRepairResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            report = engine.repair_links()
        return LinkRepairResponse(**report.to_dict())

    @router.get("/{prd_id}", response_model=PRDDetailResponse)
    async def get_prd(
        prd_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> PRDDetailResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            graph = engine.snapshot()
            prd = graph.require_prd(prd_id)
            tasks = [graph.require_task(tid) for tid in engine.prd_sync.linked_task_ids(graph, prd)]
        return PRDDetailResponse(prd=prd.to_dict(), tasks=[t.to_dict() for t in tasks])

    @router.patch("/{prd_id}", response_model=PRDResponse)
    async def update_prd(
        prd_id: str,
        body: UpdatePRDRequest,
        project_dir: Optional[str] = Query(None),
    ) -> PRDResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            prd = engine.update_prd(prd_id, **body.model_dump())
        return PRDResponse(prd=prd.to_dict())

    @router.delete("/{prd_id}", response_model=DeletePRDResponse)
    async def delete_prd(
        prd_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> DeletePRDResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            orphaned = engine.delete_prd(prd_id)
        return DeletePRDResponse(status="deleted", orphaned_tasks=orphaned)

    @router.post("/{prd_id}/tasks", response_model=SyncResponse)
    async def link_task(
        prd_id: str,
        body: LinkTaskRequest,
        project_dir: Optional[str] = Query(None),
    ) -> SyncResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            result = engine.link_task_to_prd(prd_id, body.task_id)
        return SyncResponse(**result.to_dict())

    @router.post("/{prd_id}/done", response_model=CascadeResponse)
    async def mark_done(
        prd_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> CascadeResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            result = engine.mark_prd_done(prd_id)
        return CascadeResponse(**result.to_dict())

    @router.post("/{prd_id}/resync", response_model=SyncResponse)
    async def resync(
        prd_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> SyncResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            result = engine.resync_prd(prd_id)
        return SyncResponse(**result.to_dict())

    @router.post("/{prd_id}/archive", response_model=PRDResponse)
    async def archive(
        prd_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> PRDResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            prd = engine.archive_prd(prd_id)
        return PRDResponse(prd=prd.to_dict())

    @router.post("/{prd_id}/restore", response_model=PRDResponse)
    async def restore(
        prd_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> PRDResponse:
        engine = get_engine(project_dir)
        with engine_errors():
            prd = engine.restore_prd(prd_id)
        return PRDResponse(prd=prd.to_dict())

    return router
