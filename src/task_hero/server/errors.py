"""Map engine exceptions onto HTTP errors."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from fastapi import HTTPException
from loguru import logger

from ..engine.errors import (
    CycleError,
    FixConvergenceError,
    InvalidStatusError,
    NotFoundError,
    PersistenceError,
    SelfDependencyError,
)


@contextmanager
def engine_errors() -> Iterator[None]:
    """Translate engine errors raised inside the block.

    NotFoundError becomes 404; rejected edges, bad statuses and other
    invalid input become 400; store and repair failures become 500.
    """
    try:
        yield
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CycleError as e:
        raise HTTPException(status_code=400, detail={"type": "cycle", "message": str(e), "path": e.path})
    except SelfDependencyError as e:
        raise HTTPException(status_code=400, detail={"type": "self_dependency", "message": str(e), "task": e.task_id})
    except InvalidStatusError as e:
        raise HTTPException(status_code=400, detail={"type": "invalid_status", "message": str(e), "valid": e.valid})
    except (PersistenceError, FixConvergenceError) as e:
        logger.error("Request failed: {}", e)
        raise HTTPException(status_code=500, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
