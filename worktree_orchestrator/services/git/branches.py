"""Branch query service for worktree-orchestrator."""

import os
from typing import Optional

import git

from worktree_orchestrator.models.branch import BranchInfo, BranchListing, RepoStatus
from worktree_orchestrator.services.git.worktrees import WorktreeBackend
from worktree_orchestrator.utils.naming import normalize_path
from worktree_orchestrator.logging_config import get_logger

logger = get_logger(__name__)


class BranchQueries:
    """Service for querying the branches a worktree can switch to."""

    def __init__(self, repo_path: str, backend: Optional[WorktreeBackend] = None):
        """Initialize the branch queries service.

        Args:
            repo_path: Path to the git repository
            backend: Worktree backend used to map branches to worktrees
        """
        self.repo_path = repo_path
        self.remote_name = "origin"
        self.backend = backend or WorktreeBackend(repo_path)

    def _get_repo(self):
        """Get a fresh git.Repo instance."""
        return git.Repo(self.repo_path)

    @staticmethod
    def get_repo_status(path: str) -> RepoStatus:
        """Check whether ``path`` is inside a git repository with at least one commit."""
        if not os.path.isdir(path):
            return RepoStatus(is_git_repo=False, has_commits=False)
        try:
            repo = git.Repo(path, search_parent_directories=True)
        except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError):
            return RepoStatus(is_git_repo=False, has_commits=False)
        try:
            repo.head.commit
            return RepoStatus(is_git_repo=True, has_commits=True)
        except ValueError:
            # Unborn HEAD: repository without commits
            return RepoStatus(is_git_repo=True, has_commits=False)

    def has_remote_branch(self, branch_name: str) -> bool:
        """Check if the branch has a remote tracking branch."""
        try:
            remote = self._get_repo().remote(self.remote_name)
            return f"{self.remote_name}/{branch_name}" in [ref.name for ref in remote.refs]
        except (ValueError, git.exc.GitCommandError) as e:
            logger.debug(f"Error checking remote branch {branch_name}: {e}")
            return False

    def list_branches(self, worktree_path: str, include_remote: bool = False) -> BranchListing:
        """List local branches (and optionally remote ones) for a worktree.

        Args:
            worktree_path: Worktree whose current branch and sync state to report
            include_remote: Also list remote-tracking branches

        Returns:
            BranchListing with the current branch, branches and ahead/behind counts
        """
        status = self.get_repo_status(worktree_path)
        if not status.is_git_repo or not status.has_commits:
            return BranchListing(current_branch="", repo_status=status)

        current = self.backend.current_branch(worktree_path)
        checked_out = {
            wt.branch: wt.path for wt in self.backend.list() if wt.branch
        }

        repo = self._get_repo()
        branches = []
        for head in sorted(repo.heads, key=lambda h: h.name):
            branches.append(
                BranchInfo(
                    name=head.name,
                    is_current=head.name == current,
                    worktree_path=checked_out.get(head.name),
                )
            )

        if include_remote:
            for remote in repo.remotes:
                for ref in sorted(remote.refs, key=lambda r: r.name):
                    if ref.name.endswith("/HEAD"):
                        continue
                    branches.append(BranchInfo(name=ref.name, is_remote=True))

        ahead, behind = self.backend.ahead_behind(worktree_path)
        listing = BranchListing(
            current_branch=current,
            branches=branches,
            ahead_count=ahead,
            behind_count=behind,
            has_remote_branch=bool(current) and self.has_remote_branch(current),
            repo_status=status,
        )
        logger.debug(
            f"{len(branches)} branches for {worktree_path} "
            f"(current={current or 'detached'}, ahead={ahead}, behind={behind})"
        )
        return listing

    def branch_worktree(self, branch_name: str) -> Optional[str]:
        """Path of the worktree that has ``branch_name`` checked out, if any."""
        for worktree in self.backend.list():
            if worktree.branch == branch_name:
                return worktree.path
        return None

    def is_checked_out_elsewhere(self, branch_name: str, worktree_path: str) -> bool:
        """True when ``branch_name`` is active in a worktree other than ``worktree_path``."""
        owner = self.branch_worktree(branch_name)
        return owner is not None and normalize_path(owner) != normalize_path(worktree_path)
