"""HTTP surface for the dispatch service."""

from .app import create_app

__all__ = ["create_app"]
