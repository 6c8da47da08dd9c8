"""HTTP service mode for depconf."""

from .app import create_app, run_service

__all__ = ["create_app", "run_service"]
