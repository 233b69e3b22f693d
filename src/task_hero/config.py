"""Load optional project configuration from `.task_hero/config.yaml`."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from .constants import (
    CONFIG_FILE,
    DEFAULT_LOG_LEVEL,
    EVENTS_FILE,
    LOG_LEVEL_ENV_VAR,
    STATE_DIR_NAME,
)
from .io_utils import _load_data_with_error

VALID_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


def state_dir_for(project_dir: Path) -> Path:
    return project_dir.resolve() / STATE_DIR_NAME


def load_project_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional project config file.

    Args:
        project_dir: Project root directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    path = state_dir_for(project_dir) / CONFIG_FILE
    if not path.exists():
        return {}, None
    data, err = _load_data_with_error(path, {})
    if err:
        return {}, err
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def get_log_level(config: dict[str, Any], override: str | None = None) -> str:
    """Resolve the log level: explicit override, environment, config file, default.

    Unknown level names fall through to the next source.
    """
    candidates = (override, os.environ.get(LOG_LEVEL_ENV_VAR), config.get("log_level"))
    for raw in candidates:
        if isinstance(raw, str) and raw.strip().upper() in VALID_LOG_LEVELS:
            return raw.strip().upper()
    return DEFAULT_LOG_LEVEL


def get_events_config(config: dict[str, Any]) -> dict[str, Any]:
    """Extract the events block with defaults applied.

    Args:
        config: Project configuration dictionary.

    Returns:
        A mapping with `enabled` (bool) and `filename` (str).
    """
    enabled = _get_nested(config, "events", "enabled")
    filename = _get_nested(config, "events", "filename")
    return {
        "enabled": enabled if isinstance(enabled, bool) else True,
        "filename": filename if isinstance(filename, str) and filename else EVENTS_FILE,
    }
