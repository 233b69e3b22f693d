"""Configure the loguru sink and summarize engine results for log lines."""

from __future__ import annotations

import sys
from collections import Counter
from typing import Any, Iterable

from loguru import logger


def _configure_logging(level: str = "INFO") -> None:
    """Configure loguru logger with the specified level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{module}</cyan>:<cyan>{line}</cyan>\n"
            "{message}"
        ),
    )


def summarize_issues(issues: Iterable[Any]) -> dict[str, Any]:
    """Count validation or link issues by kind.

    Args:
        issues: Validator issues (``kind`` attribute) or link issues (``type``).

    Returns:
        A dictionary with `total` and a `by_kind` mapping.
    """
    counts: Counter[str] = Counter()
    for issue in issues:
        counts[getattr(issue, "kind", None) or getattr(issue, "type", "unknown")] += 1
    return {"total": sum(counts.values()), "by_kind": dict(sorted(counts.items()))}
