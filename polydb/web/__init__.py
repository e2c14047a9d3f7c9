"""HTTP API for PolyDB."""

from .app import create_app

__all__ = ["create_app"]
