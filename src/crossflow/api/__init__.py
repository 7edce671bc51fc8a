"""HTTP API for starting and controlling orchestrations."""

from .server import create_app

__all__ = ["create_app"]
