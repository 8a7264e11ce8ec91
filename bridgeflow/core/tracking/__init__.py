"""Confirmation polling and lifecycle progression."""

from .tracker import StatusTracker

__all__ = ["StatusTracker"]
