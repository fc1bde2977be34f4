"""Laneflow: concurrent work-unit coordination over git worktrees."""

__version__ = "0.4.0"
