"""Provide utility helpers for timestamps and task id ordering."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Union


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def id_sort_key(task_id: str) -> tuple[tuple[int, Union[int, str]], ...]:
    """Natural ordering key for hierarchical task ids.

    ``"2" < "10" < "10.1" < "10.2" < "abc"``: numeric segments compare as
    integers and sort before non-numeric segments.
    """
    parts: list[tuple[int, Union[int, str]]] = []
    for segment in str(task_id).split("."):
        if segment.isdigit():
            parts.append((0, int(segment)))
        else:
            parts.append((1, segment))
    return tuple(parts)


def normalize_id(value: object) -> str:
    """Coerce an id read from YAML/JSON/CLI (int or str) to its canonical string."""
    return str(value).strip()
