"""VibeTree: parallel coding tasks in isolated git worktrees."""

__version__ = "0.1.0"
