"""REST adapter over the consistency service."""

from .api import create_app

__all__ = ["create_app"]
