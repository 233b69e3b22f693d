from __future__ import annotations

import json
from pathlib import Path

import pytest

from task_hero.cli import main


def _run(tmp_path: Path, *argv: str) -> int:
    return main(["--project-dir", str(tmp_path), *argv])


def _json(capsys: pytest.CaptureFixture[str], tmp_path: Path, *argv: str) -> dict:
    capsys.readouterr()
    assert _run(tmp_path, *argv, "--json") == 0
    return json.loads(capsys.readouterr().out)


def test_task_lifecycle(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(tmp_path, "add-task", "Set up repo", "--priority", "high") == 0
    assert _run(tmp_path, "add-task", "Write parser", "--priority", "high", "--dependencies", "1") == 0
    assert _run(tmp_path, "list") == 0
    assert _run(tmp_path, "show", "2") == 0

    assert _json(capsys, tmp_path, "next")["task"]["id"] == "1"
    changes = _json(capsys, tmp_path, "set-status", "1", "done")["changes"]
    assert changes[0]["unblocked"] == ["2"]
    assert _json(capsys, tmp_path, "next")["task"]["id"] == "2"


def test_mark_alias_accepts_comma_separated_ids(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _run(tmp_path, "add-task", "One")
    _run(tmp_path, "add-task", "Two")
    changes = _json(capsys, tmp_path, "mark", "1,2", "in-progress")["changes"]
    assert [c["status"] for c in changes] == ["in-progress", "in-progress"]


def test_unknown_ids_fail_without_changes(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _run(tmp_path, "add-task", "One")
    assert _run(tmp_path, "set-status", "1,9", "done") == 1
    assert "Task 9 not found" in capsys.readouterr().err
    tasks = _json(capsys, tmp_path, "list")["tasks"]
    assert tasks[0]["status"] == "pending"


def test_invalid_status(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _run(tmp_path, "add-task", "One")
    assert _run(tmp_path, "set-status", "1", "finished") == 1
    assert "Invalid status" in capsys.readouterr().err


def test_dependency_commands(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _run(tmp_path, "add-task", "One")
    _run(tmp_path, "add-task", "Two")
    assert _run(tmp_path, "add-dependency", "1", "2") == 0
    assert _run(tmp_path, "add-dependency", "2", "1") == 1
    assert "1 -> 2 -> 1" in capsys.readouterr().err

    assert _json(capsys, tmp_path, "validate-dependencies")["valid"] is True
    assert _json(capsys, tmp_path, "execution-order")["order"] == ["2", "1"]
    assert _json(capsys, tmp_path, "execution-order", "--batches")["batches"] == [["2"], ["1"]]
    assert _json(capsys, tmp_path, "remove-dependency", "1", "2")["removed"] is True


def test_validate_and_fix(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    state = tmp_path / ".task_hero"
    state.mkdir()
    (state / "board.yaml").write_text(
        "version: 1\ntasks:\n- id: '1'\n- id: '2'\n- id: '3'\n  dependencies: ['99']\nprds: []\n",
        encoding="utf-8",
    )
    capsys.readouterr()
    assert _run(tmp_path, "validate-dependencies", "--json") == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload["issues"] == [{
        "type": "dangling_reference",
        "task": "3",
        "missing_id": "99",
        "message": "Task 3 depends on missing task 99",
    }]

    report = _json(capsys, tmp_path, "fix-dependencies")
    assert report["removed_edges"] == [{"task": "3", "depends_on": "99"}]
    assert _run(tmp_path, "validate-dependencies") == 0


def test_prd_commands(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(tmp_path, "prd-add", "Auth", "--file-name", "auth.md") == 0
    _run(tmp_path, "add-task", "Login", "--prd", "1")
    _run(tmp_path, "add-task", "Logout")
    assert _run(tmp_path, "prd-link", "1", "2") == 0
    _run(tmp_path, "set-status", "1", "done")

    prd = _json(capsys, tmp_path, "prd-show", "1")["prd"]
    assert prd["status"] == "pending"
    assert prd["task_stats"]["completion_percentage"] == 50

    result = _json(capsys, tmp_path, "prd-done", "1")
    assert result["updated_task_ids"] == ["2"]
    assert _json(capsys, tmp_path, "prd-archive", "1")["prd"]["status"] == "archived"
    assert _json(capsys, tmp_path, "prd-list", "--status", "archived")["prds"][0]["id"] == "1"
    assert _json(capsys, tmp_path, "prd-restore", "1")["prd"]["status"] == "done"
    assert _json(capsys, tmp_path, "prd-sync")["processed"] == 1
    assert _json(capsys, tmp_path, "prd-check")["valid"] is True
    assert _run(tmp_path, "prd-list") == 0
    assert _run(tmp_path, "board") == 0


def test_prd_check_auto_fix(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    state = tmp_path / ".task_hero"
    state.mkdir()
    (state / "board.yaml").write_text(
        "tasks:\n- id: '1'\n  prd_id: '1'\nprds:\n- id: '1'\n  linked_tasks: ['5']\n",
        encoding="utf-8",
    )
    assert _run(tmp_path, "prd-check") == 1
    report = _json(capsys, tmp_path, "prd-check", "--auto-fix")
    assert report["linked"] == [{"prd_id": "1", "task_id": "1"}]
    assert report["unlinked"] == [{"prd_id": "1", "task_id": "5"}]
    assert _run(tmp_path, "prd-check") == 0


def test_next_on_empty_board(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    payload = _json(capsys, tmp_path, "next")
    assert payload["task"] is None
    assert payload["reason"] == "NoPendingTasks"
    assert _run(tmp_path, "next") == 0


def test_update_and_remove_task(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _run(tmp_path, "add-task", "One")
    _run(tmp_path, "add-task", "Two", "--dependencies", "1")
    _run(tmp_path, "add-task", "Three")

    task = _json(capsys, tmp_path, "update-task", "2", "--title", "Second", "--dependencies", "3")["task"]
    assert task["title"] == "Second"
    assert task["dependencies"] == ["3"]

    assert _run(tmp_path, "update-task", "3", "--dependencies", "2") == 1
    assert "cycle" in capsys.readouterr().err.lower()

    assert _json(capsys, tmp_path, "remove-task", "3")["deleted"] == ["3"]
    tasks = _json(capsys, tmp_path, "list")["tasks"]
    assert [(t["id"], t["dependencies"]) for t in tasks] == [("1", []), ("2", [])]
    assert _json(capsys, tmp_path, "validate-dependencies")["valid"] is True


def test_prd_update_and_remove(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _run(tmp_path, "prd-add", "Auth")
    _run(tmp_path, "add-task", "Login", "--prd", "1")
    prd = _json(capsys, tmp_path, "prd-update", "1", "--file-name", "auth.md")["prd"]
    assert prd["file_name"] == "auth.md"

    assert _json(capsys, tmp_path, "prd-remove", "1")["orphaned_tasks"] == ["1"]
    assert _json(capsys, tmp_path, "prd-list")["prds"] == []
    assert _json(capsys, tmp_path, "show", "1")["task"]["prd_id"] is None


def test_corrupt_board_is_reported(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    state = tmp_path / ".task_hero"
    state.mkdir()
    (state / "board.yaml").write_text("tasks:\n- id: '1'\n  metadata: 5\n", encoding="utf-8")
    assert _run(tmp_path, "list") == 1
    assert "board.yaml" in capsys.readouterr().err
