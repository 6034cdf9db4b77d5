"""HTTP server."""

from nimbridge.server.app import build_pipeline, create_app

__all__ = ["build_pipeline", "create_app"]
