"""API routes."""

from . import agent, health

__all__ = ["agent", "health"]
