"""File-based board store with process and thread locking.

Tasks and PRDs live together in a single YAML file (``board.yaml``) inside the
project's ``.task_hero/`` directory, so one write commits every entity an
operation touched.  All mutations go through :meth:`TaskStore.transaction`,
which holds an exclusive file lock for the whole load-mutate-save cycle.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import yaml
from loguru import logger

from ..constants import LOCK_FILE, STORE_FILE, STORE_VERSION
from ..io_utils import FileLock, _atomic_write_yaml, _load_data_with_error
from .errors import PersistenceError
from .graph import TaskGraph
from .model import PRD, Task


# ---------------------------------------------------------------------------
# Low-level I/O
# ---------------------------------------------------------------------------

def _empty_payload() -> dict[str, Any]:
    return {"version": STORE_VERSION, "tasks": [], "prds": []}


def _records(data: dict[str, Any], key: str, path: Path) -> list[dict[str, Any]]:
    raw = data.get(key) or []
    if not isinstance(raw, list):
        raise PersistenceError(f"{path.name}: '{key}' must be a list, got {type(raw).__name__}")
    return [item for item in raw if isinstance(item, dict) and item.get("id") not in (None, "")]


def _load_graph(path: Path) -> TaskGraph:
    data, err = _load_data_with_error(path, _empty_payload())
    if err:
        raise PersistenceError(err)
    try:
        tasks = [Task.from_dict(d) for d in _records(data, "tasks", path)]
        prds = [PRD.from_dict(d) for d in _records(data, "prds", path)]
        return TaskGraph(tasks, prds)
    except (ValueError, TypeError) as exc:
        # Duplicate ids or a field of the wrong shape.
        raise PersistenceError(f"{path.name}: {exc}") from exc


def _save_graph(path: Path, graph: TaskGraph) -> None:
    payload = {
        "version": STORE_VERSION,
        "tasks": [t.to_dict() for t in graph.tasks],
        "prds": [p.to_dict() for p in graph.prds],
    }
    try:
        _atomic_write_yaml(path, payload)
    except (OSError, yaml.YAMLError) as exc:
        raise PersistenceError(f"{path.name}: {exc.__class__.__name__}: {exc}") from exc


# ---------------------------------------------------------------------------
# TaskStore
# ---------------------------------------------------------------------------

class TaskStore:
    """Thread-safe, file-backed store for the task graph.

    Parameters
    ----------
    state_dir:
        Path to the ``.task_hero/`` directory for the project.
    """

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = state_dir
        self._store_path = state_dir / STORE_FILE
        self._lock_path = state_dir / LOCK_FILE
        self._thread_lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._store_path

    @contextmanager
    def _locked(self) -> Iterator[None]:
        # flock is per open file description, so threads of this process are
        # serialized here before each one takes its own file handle.
        with self._thread_lock:
            with FileLock(self._lock_path):
                yield

    # -- public API ---------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[TaskGraph]:
        """Acquire the lock, load the graph, yield it, and save on clean exit.

        Nothing is written when the block raises or leaves the graph clean.

        Usage::

            with store.transaction() as graph:
                graph.add_dependency("2", "1")
                # saved on exit
        """
        with self._locked():
            graph = _load_graph(self._store_path)
            yield graph
            if graph.is_dirty:
                _save_graph(self._store_path, graph)
                logger.debug(
                    "Committed {} task(s) and {} PRD(s) to {}",
                    len(graph.dirty_task_ids),
                    len(graph.dirty_prd_ids),
                    self._store_path,
                )
                graph.clear_dirty()

    def load_graph(self) -> TaskGraph:
        """Return a snapshot (no lock held after return)."""
        with self._locked():
            return _load_graph(self._store_path)

    def load_task(self, task_id: str) -> Task:
        return self.load_graph().require_task(task_id)

    def load_prd(self, prd_id: str) -> PRD:
        return self.load_graph().require_prd(prd_id)

    def commit(self, graph: TaskGraph) -> None:
        """Write *graph* as the whole board in one atomic replace."""
        with self._locked():
            _save_graph(self._store_path, graph)
        graph.clear_dirty()
