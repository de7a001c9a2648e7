"""Utility functions for worktree-orchestrator.

This package provides utility modules:
- naming: Branch name to directory name mapping
- threading: Worker count heuristics for parallel git queries
"""

from .naming import normalize_path, sanitize_branch_name, worktree_path_for
from .threading import (
    is_free_threading_enabled,
    get_optimal_worker_count,
    get_threading_info,
)

__all__ = [
    # Naming
    "normalize_path",
    "sanitize_branch_name",
    "worktree_path_for",
    # Threading
    "is_free_threading_enabled",
    "get_optimal_worker_count",
    "get_threading_info",
]
