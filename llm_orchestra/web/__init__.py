"""HTTP binding of the spawn and status contracts."""

from .app import create_app

__all__ = ["create_app"]
