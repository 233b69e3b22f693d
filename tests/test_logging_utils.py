"""Tests for logging_utils module."""

from __future__ import annotations

import pytest
from loguru import logger

from task_hero.engine.graph import TaskGraph
from task_hero.engine.model import PRD, Task
from task_hero.engine.prd_sync import PRDSyncEngine
from task_hero.engine.validator import validate
from task_hero.logging_utils import _configure_logging, summarize_issues


class TestSummarizeIssues:
    def test_empty(self) -> None:
        assert summarize_issues([]) == {"total": 0, "by_kind": {}}

    def test_validator_issues(self) -> None:
        graph = TaskGraph([Task(id="1", dependencies=["1", "7"]), Task(id="2", dependencies=["8"])])
        summary = summarize_issues(validate(graph))
        assert summary == {"total": 3, "by_kind": {"dangling_reference": 2, "self_dependency": 1}}

    def test_link_issues(self) -> None:
        graph = TaskGraph([Task(id="1", prd_id="p")], [PRD(id="p", linked_tasks=["9"])])
        summary = summarize_issues(PRDSyncEngine().check_links(graph))
        assert summary["by_kind"] == {"missing_task_link": 1, "orphaned_task_link": 1}


def test_configure_logging_applies_lowercase_level(capsys: pytest.CaptureFixture[str]) -> None:
    try:
        _configure_logging("warning")
        logger.info("routine detail")
        logger.warning("needs attention")
        err = capsys.readouterr().err
        assert "needs attention" in err
        assert "routine detail" not in err

        _configure_logging("debug")
        logger.debug("fine detail")
        assert "fine detail" in capsys.readouterr().err
    finally:
        logger.remove()
