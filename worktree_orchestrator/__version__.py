"""Version information for worktree-orchestrator."""

__version__ = "0.1.0"
