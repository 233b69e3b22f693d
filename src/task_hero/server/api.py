"""FastAPI application for the Task Hero REST API."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware

from ..engine.service import ConsistencyService
from .prd_api import create_prd_router
from .task_api import create_task_router


def create_app(
    project_dir: Optional[Path] = None,
    enable_cors: bool = True,
) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        project_dir: Default project directory.
        enable_cors: Whether to enable CORS.

    Returns:
        Configured FastAPI app.
    """
    app = FastAPI(
        title="Task Hero",
        description="Tasks, dependencies and PRDs for a project board",
        version="1.0.0",
    )

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.state.default_project_dir = project_dir

    def _get_project_dir(project_dir_param: Optional[str] = None) -> Path:
        """Get project directory from parameter or default."""
        if project_dir_param:
            return Path(project_dir_param)
        if app.state.default_project_dir:
            return app.state.default_project_dir
        return Path.cwd()

    def _get_engine(project_dir_param: Optional[str] = None) -> ConsistencyService:
        # A fresh service per request; every call reloads the board from disk.
        return ConsistencyService(_get_project_dir(project_dir_param))

    @app.get("/")
    async def root():
        return {
            "name": "Task Hero",
            "version": "1.0.0",
            "status": "running",
        }

    @app.get("/api/events")
    async def recent_events(
        project_dir: Optional[str] = Query(None),
        limit: int = Query(100, ge=1, le=1000),
    ):
        return {"events": _get_engine(project_dir).recent_events(limit)}

    app.include_router(create_task_router(_get_engine))
    app.include_router(create_prd_router(_get_engine))
    return app
