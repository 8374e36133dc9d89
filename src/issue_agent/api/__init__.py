"""HTTP surface: synchronous, polled, and streamed analysis runs."""

from .main import app, create_app

__all__ = ["app", "create_app"]
