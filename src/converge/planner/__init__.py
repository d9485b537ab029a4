"""Diff/planner: classify nodes against state and order provider operations."""

from .planner import plan, Planner
from .refresh import refresh_state

__all__ = ["plan", "Planner", "refresh_state"]
