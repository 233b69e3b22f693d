"""Provide the public `task_hero` package exports."""

from __future__ import annotations

from .engine import ConsistencyService, TaskGraph

__all__ = ["ConsistencyService", "TaskGraph"]
