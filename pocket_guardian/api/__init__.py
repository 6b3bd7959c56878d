"""Local control API."""

from .server import create_server

__all__ = ["create_server"]
