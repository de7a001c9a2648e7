"""Data models for worktree-orchestrator."""

from .worktree import Worktree
from .dev_server import DevServerInstance, DevServerStatus
from .auto_mode import AutoModeKey, AutoModeRun
from .branch import BranchInfo, BranchListing, RepoStatus

__all__ = [
    "Worktree",
    "DevServerInstance",
    "DevServerStatus",
    "AutoModeKey",
    "AutoModeRun",
    "BranchInfo",
    "BranchListing",
    "RepoStatus",
]
