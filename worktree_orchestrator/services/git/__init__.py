"""Git-related services for worktree-orchestrator."""

from .worktrees import WorktreeBackend, parse_worktree_porcelain
from .branches import BranchQueries

__all__ = [
    "WorktreeBackend",
    "parse_worktree_porcelain",
    "BranchQueries",
]
