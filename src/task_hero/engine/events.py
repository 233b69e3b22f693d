"""Append-only event log for board mutations.

Every committed mutation is written as one JSON line to
``.task_hero/events.jsonl`` and handed to in-process subscribers (the
server uses this to feed its ``/api/events`` endpoint).
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Callable, Optional

from loguru import logger

from ..io_utils import _append_event, _read_events
from ..utils import _now_iso

Subscriber = Callable[[dict[str, Any]], None]


class EventLog:
    def __init__(self, path: Optional[Path], enabled: bool = True) -> None:
        self.path = path
        self.enabled = enabled and path is not None
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register *callback*; returns a function that unregisters it."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def emit(self, event_type: str, entity_id: str, **details: Any) -> dict[str, Any]:
        event: dict[str, Any] = {
            "type": event_type,
            "entity_id": entity_id,
            "timestamp": _now_iso(),
            **details,
        }
        if self.enabled and self.path is not None:
            try:
                _append_event(self.path, event)
            except OSError as exc:
                # The board is already committed at this point.
                logger.warning("Could not append event {} to {}: {}", event_type, self.path, exc)

        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception("Event subscriber failed for {}", event_type)
        return event

    def recent(self, limit: int = 100) -> list[dict[str, Any]]:
        if self.path is None:
            return []
        return _read_events(self.path, limit=limit)
