"""HTTP API for project tracking and billing."""

from .app import create_app

__all__ = ["create_app"]
