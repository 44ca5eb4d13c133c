"""HTTP surface of the image toolkit."""

from .app import create_app

__all__ = ["create_app"]
