"""Worktree data models."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Worktree:
    """A git working copy of one branch of the project."""

    path: str
    branch: str  # "" when HEAD is detached
    is_main: bool
    commit_sha: str = ""
    has_changes: bool = False
    changed_files_count: int = 0
    ahead_count: Optional[int] = None  # None = not computed
    behind_count: Optional[int] = None

    @property
    def is_detached(self) -> bool:
        return not self.branch

    def __str__(self) -> str:
        """String representation of worktree."""
        main_marker = " (main)" if self.is_main else ""
        branch = self.branch or "(detached)"
        return f"{branch} @ {self.path}{main_marker}"
