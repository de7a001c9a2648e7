"""Branch models used by the branch switcher."""
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class BranchInfo:
    """A local or remote-tracking branch."""
    name: str
    is_current: bool = False
    is_remote: bool = False
    worktree_path: Optional[str] = None  # Worktree that has this branch checked out

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "isCurrent": self.is_current,
            "isRemote": self.is_remote,
            "worktreePath": self.worktree_path,
        }


@dataclass(frozen=True)
class RepoStatus:
    """Whether a path is a usable git repository."""
    is_git_repo: bool
    has_commits: bool

    def to_dict(self) -> dict:
        return {"isGitRepo": self.is_git_repo, "hasCommits": self.has_commits}


@dataclass
class BranchListing:
    """Branches available to a worktree, with its sync state."""
    current_branch: str
    branches: List[BranchInfo] = field(default_factory=list)
    ahead_count: int = 0
    behind_count: int = 0
    has_remote_branch: bool = False
    repo_status: RepoStatus = field(default_factory=lambda: RepoStatus(True, True))

    def filtered(self, text: str) -> List[BranchInfo]:
        """Branches whose name contains ``text`` (case-insensitive)."""
        needle = (text or "").strip().lower()
        if not needle:
            return list(self.branches)
        return [b for b in self.branches if needle in b.name.lower()]
