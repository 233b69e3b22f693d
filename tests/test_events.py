"""Tests for the JSONL event log (engine/events.py)."""

from __future__ import annotations

from pathlib import Path

from task_hero.engine.events import EventLog


def test_emit_appends_and_reads_back(tmp_path: Path) -> None:
    log = EventLog(tmp_path / "events.jsonl")
    log.emit("task.created", "1", title="One")
    log.emit("task.status_changed", "1", to="done")

    events = log.recent()
    assert [e["type"] for e in events] == ["task.created", "task.status_changed"]
    assert events[1]["to"] == "done"
    assert "timestamp" in events[0]
    assert [e["entity_id"] for e in log.recent(limit=1)] == ["1"]


def test_disabled_log_still_notifies(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    log = EventLog(path, enabled=False)
    seen: list[dict] = []
    log.subscribe(seen.append)
    log.emit("prd.archived", "3")
    assert not path.exists()
    assert seen[0]["entity_id"] == "3"


def test_failing_subscriber_does_not_stop_others(tmp_path: Path) -> None:
    log = EventLog(tmp_path / "events.jsonl")
    seen: list[str] = []

    def broken(event: dict) -> None:
        raise RuntimeError("listener crashed")

    log.subscribe(broken)
    log.subscribe(lambda event: seen.append(event["type"]))
    log.emit("task.created", "1")
    assert seen == ["task.created"]


def test_unsubscribe(tmp_path: Path) -> None:
    log = EventLog(tmp_path / "events.jsonl")
    seen: list[dict] = []
    unsubscribe = log.subscribe(seen.append)
    unsubscribe()
    log.emit("task.created", "1")
    assert seen == []


def test_corrupt_lines_are_skipped(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    path.write_text('{"type": "a"}\nnot json\n{"type": "b"}\n', encoding="utf-8")
    assert [e["type"] for e in EventLog(path).recent()] == ["a", "b"]
