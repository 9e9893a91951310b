"""HTTP interface for the production control core."""

from .app import create_app

__all__ = ["create_app"]
