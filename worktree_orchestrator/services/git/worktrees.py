"""Worktree backend for worktree-orchestrator.

Thin wrapper over `git worktree` and the few branch primitives the
orchestrator needs. Holds no state besides the repository path; every call
shells out to git through GitPython and may block.
"""

import os
import re
from typing import Any, Dict, List, Optional, Tuple

import git

from worktree_orchestrator.exceptions import (
    BackendError,
    BranchConflictError,
    BranchInUseError,
    CannotDeleteMainError,
    InvalidBranchNameError,
    PathExistsError,
    WorktreeInUseError,
    WorktreeNotFoundError,
)
from worktree_orchestrator.logging_config import get_logger
from worktree_orchestrator.models.worktree import Worktree
from worktree_orchestrator.utils.naming import normalize_path

logger = get_logger(__name__)

_BRANCH_CONFLICT_MARKERS = ("is already checked out at", "is already used by worktree", "already checked out")
_DIRTY_MARKERS = ("contains modified or untracked files", "use --force to delete it", "would be overwritten")
_NOT_A_WORKTREE_MARKERS = ("is not a working tree", "is a main working tree")
_UNKNOWN_REF_MARKERS = ("did not match any", "invalid reference", "not a valid", "unknown revision")
_CHECKED_OUT_AT = re.compile(r"(?:checked out at|used by worktree at) '([^']+)'?")


def describe_git_error(e: git.exc.GitCommandError) -> Tuple[Optional[int], str]:
    """Extract (exit status, stderr) from a GitCommandError."""
    stderr = (e.stderr if getattr(e, "stderr", None) else str(e)).strip()
    if stderr.startswith("stderr:"):
        stderr = stderr[len("stderr:"):].strip().strip("'").strip()
    status = e.status if isinstance(getattr(e, "status", None), int) else None
    return status, stderr


def backend_error(operation: str, e: git.exc.GitCommandError) -> BackendError:
    """Wrap a GitCommandError into a BackendError, keeping the git details."""
    status, stderr = describe_git_error(e)
    return BackendError(operation, stderr or None, status=status, stderr=stderr)


def parse_worktree_porcelain(output: str) -> List[Dict[str, Any]]:
    """Parse `git worktree list --porcelain` output.

    Format::

        worktree /path/to/worktree
        HEAD <sha>
        branch refs/heads/<name>      (or "detached")
        prunable gitdir file points to non-existent location   (optional)

    with a blank line between entries. The first entry is always the main
    working tree.
    """
    entries: List[Dict[str, Any]] = []
    current: Dict[str, Any] = {}

    def flush():
        if current.get("path"):
            current["is_main"] = not entries
            entries.append(dict(current))
        current.clear()

    for raw_line in output.split("\n"):
        line = raw_line.strip()
        if not line:
            flush()
            continue

        if line.startswith("worktree "):
            flush()
            current["path"] = line.split(" ", 1)[1]
            current["branch"] = ""
            current["HEAD"] = ""
        elif line.startswith("HEAD "):
            current["HEAD"] = line.split(" ", 1)[1]
        elif line.startswith("branch "):
            branch_ref = line.split(" ", 1)[1]
            if branch_ref.startswith("refs/heads/"):
                current["branch"] = branch_ref[len("refs/heads/"):]
            else:
                current["branch"] = ""
        elif line == "detached":
            current["branch"] = ""
        elif line == "bare":
            current["bare"] = True
        elif line.startswith("prunable"):
            current["prunable"] = True
        elif line.startswith("locked"):
            current["locked"] = True

    # Handle last entry if no trailing blank line
    flush()
    return entries


class WorktreeBackend:
    """Git worktree and branch primitives for one repository."""

    def __init__(self, repo_path: str):
        """Initialize the backend.

        Args:
            repo_path: Path to the git repository (main working tree)
        """
        self.repo_path = repo_path

    def _get_repo(self) -> git.Repo:
        """Get a fresh git.Repo instance.

        A new instance per call keeps the backend safe to use from the
        reconciliation thread and request threads at the same time.
        """
        try:
            return git.Repo(self.repo_path)
        except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError) as e:
            raise BackendError("open_repository", f"{self.repo_path} is not a git repository") from e

    def _run_in(self, path: str, *args: str) -> str:
        """Run a git command inside another working tree of the repository."""
        repo = self._get_repo()
        return repo.git.execute(["git", "-C", path, *args])

    # ------------------------------------------------------------------ queries

    def list(self, include_orphaned: bool = False) -> List[Worktree]:
        """List worktrees, main first.

        Args:
            include_orphaned: Also return entries whose directory no longer exists

        Returns:
            Ordered list of Worktree objects
        """
        try:
            output = self._get_repo().git.worktree("list", "--porcelain")
        except git.exc.GitCommandError as e:
            raise backend_error("worktree list", e)

        worktrees = []
        for entry in parse_worktree_porcelain(output):
            if entry.get("bare"):
                continue
            path = entry["path"]
            orphaned = entry.get("prunable", False) or not os.path.isdir(path)
            if orphaned and not entry["is_main"] and not include_orphaned:
                logger.debug(f"Skipping orphaned worktree entry {path}")
                continue
            worktrees.append(
                Worktree(
                    path=path,
                    branch=entry.get("branch", ""),
                    is_main=entry["is_main"],
                    commit_sha=entry.get("HEAD", ""),
                )
            )

        logger.debug(f"Found {len(worktrees)} worktrees")
        return worktrees

    def get(self, path: str, include_orphaned: bool = False) -> Optional[Worktree]:
        """Find a worktree by path."""
        wanted = normalize_path(path)
        for worktree in self.list(include_orphaned=include_orphaned):
            if normalize_path(worktree.path) == wanted:
                return worktree
        return None

    def current_branch(self, path: str) -> str:
        """Branch checked out at ``path``; empty string for a detached HEAD."""
        try:
            return self._run_in(path, "symbolic-ref", "--quiet", "--short", "HEAD").strip()
        except git.exc.GitCommandError as e:
            status, _ = describe_git_error(e)
            if status == 1:
                return ""
            raise backend_error("current_branch", e)

    def ahead_behind(self, path: str) -> Tuple[int, int]:
        """Commits ahead of and behind the upstream branch; (0, 0) without an upstream."""
        try:
            output = self._run_in(path, "rev-list", "--left-right", "--count", "HEAD...@{upstream}")
        except git.exc.GitCommandError as e:
            logger.debug(f"No upstream for {path}: {describe_git_error(e)[1]}")
            return 0, 0
        parts = output.split()
        if len(parts) != 2:
            return 0, 0
        return int(parts[0]), int(parts[1])

    def change_count(self, path: str) -> int:
        """Number of changed files (staged, unstaged and untracked) in a worktree."""
        if not os.path.isdir(path):
            return 0
        try:
            output = self._run_in(path, "status", "--porcelain")
        except git.exc.GitCommandError as e:
            raise backend_error("status", e)
        return len([line for line in output.split("\n") if line.strip()])

    def has_tracked_changes(self, path: str) -> bool:
        """True when tracked files are modified or staged (untracked files ignored)."""
        try:
            output = self._run_in(path, "status", "--porcelain", "--untracked-files=no")
        except git.exc.GitCommandError as e:
            raise backend_error("status", e)
        return bool(output.strip())

    def branch_exists(self, branch: str) -> bool:
        """Check whether a local branch exists."""
        return branch in [head.name for head in self._get_repo().heads]

    def validate_branch_name(self, branch: str) -> None:
        """Raise InvalidBranchNameError unless git accepts ``branch``."""
        if not branch or not branch.strip():
            raise InvalidBranchNameError(branch, "branch name cannot be empty")
        try:
            self._get_repo().git.check_ref_format("--branch", branch)
        except git.exc.GitCommandError as e:
            raise InvalidBranchNameError(branch, describe_git_error(e)[1] or "rejected by git") from e

    # ---------------------------------------------------------------- mutations

    def create(self, branch: str, path: str) -> Worktree:
        """Create a worktree at ``path`` for ``branch``.

        The branch is created from the current HEAD when it does not exist yet.

        Raises:
            PathExistsError: ``path`` is already occupied
            BranchConflictError: ``branch`` is checked out in another worktree
            BackendError: any other git failure
        """
        if os.path.lexists(path):
            raise PathExistsError(path)

        os.makedirs(os.path.dirname(path), exist_ok=True)
        repo = self._get_repo()
        if self.branch_exists(branch):
            args = ["add", path, branch]
        else:
            args = ["add", "-b", branch, path]

        try:
            repo.git.worktree(*args)
        except git.exc.GitCommandError as e:
            status, stderr = describe_git_error(e)
            lowered = stderr.lower()
            if any(marker in lowered for marker in _BRANCH_CONFLICT_MARKERS):
                raise BranchConflictError(branch, stderr) from e
            if "already exists" in lowered and os.path.lexists(path):
                raise PathExistsError(path, stderr) from e
            logger.error(f"Failed to create worktree for {branch} at {path}: {stderr}")
            raise backend_error("worktree add", e) from e

        logger.info(f"Created worktree for {branch} at {path}")
        created = self.get(path)
        if created is not None:
            return created
        return Worktree(path=os.path.realpath(path), branch=branch, is_main=False)

    def remove(self, path: str, delete_branch: bool = False, force: bool = False) -> Worktree:
        """Remove the worktree at ``path`` and optionally its branch.

        Args:
            path: Path of the worktree directory
            delete_branch: Also delete the branch the worktree had checked out
            force: Remove even with uncommitted changes

        Returns:
            The removed worktree as it was listed before removal

        Raises:
            WorktreeNotFoundError: no worktree is registered at ``path``
            CannotDeleteMainError: ``path`` is the main working tree
            WorktreeInUseError: uncommitted changes and ``force`` is False
            BackendError: any other git failure; operation "delete_branch" means
                the worktree itself was removed but the branch was not
        """
        worktree = self.get(path, include_orphaned=True)
        if worktree is None:
            raise WorktreeNotFoundError(path)
        if worktree.is_main:
            raise CannotDeleteMainError(path)

        repo = self._get_repo()
        try:
            if os.path.isdir(worktree.path):
                args = ["remove", worktree.path]
                if force:
                    args.append("--force")
                repo.git.worktree(*args)
            else:
                # Directory already gone; only the administrative entry is left
                repo.git.worktree("prune")
        except git.exc.GitCommandError as e:
            status, stderr = describe_git_error(e)
            lowered = stderr.lower()
            if any(marker in lowered for marker in _DIRTY_MARKERS):
                raise WorktreeInUseError(path, stderr) from e
            if any(marker in lowered for marker in _NOT_A_WORKTREE_MARKERS):
                raise WorktreeNotFoundError(path, stderr) from e
            logger.error(f"Failed to remove worktree at {path}: {stderr}")
            raise backend_error("worktree remove", e) from e

        logger.info(f"Removed worktree at {worktree.path}")

        if delete_branch and worktree.branch:
            try:
                repo.git.branch("-D", worktree.branch)
                logger.info(f"Deleted branch {worktree.branch}")
            except git.exc.GitCommandError as e:
                logger.error(f"Worktree removed but branch {worktree.branch} was not deleted: {describe_git_error(e)[1]}")
                raise backend_error("delete_branch", e) from e

        return worktree

    def switch_branch(self, path: str, branch: str) -> None:
        """Check out ``branch`` in place in the worktree at ``path``.

        Raises:
            WorktreeNotFoundError: ``branch`` does not exist
            WorktreeInUseError: tracked files have uncommitted changes
            BranchInUseError: ``branch`` is checked out in another worktree
            BackendError: any other git failure
        """
        if not self.branch_exists(branch):
            raise WorktreeNotFoundError(branch, f"Branch not found: {branch}")

        wanted = normalize_path(path)
        for worktree in self.list():
            if worktree.branch == branch and normalize_path(worktree.path) != wanted:
                raise BranchInUseError(branch, worktree.path)

        if self.has_tracked_changes(path):
            raise WorktreeInUseError(path, "commit or stash changes before switching branches")

        try:
            self._run_in(path, "checkout", branch)
        except git.exc.GitCommandError as e:
            status, stderr = describe_git_error(e)
            lowered = stderr.lower()
            if any(marker in lowered for marker in _BRANCH_CONFLICT_MARKERS):
                match = _CHECKED_OUT_AT.search(stderr)
                raise BranchInUseError(branch, match.group(1) if match else "another worktree") from e
            if any(marker in lowered for marker in _DIRTY_MARKERS):
                raise WorktreeInUseError(path, stderr) from e
            if any(marker in lowered for marker in _UNKNOWN_REF_MARKERS):
                raise WorktreeNotFoundError(branch, stderr) from e
            raise backend_error("checkout", e) from e

        logger.info(f"Switched {path} to {branch}")

    def ensure_excluded(self, pattern: str) -> bool:
        """Add ``pattern`` to the repository's info/exclude if it is missing.

        Worktrees live inside the main working tree, which would otherwise
        report them as untracked files.

        Returns:
            True if the pattern was added
        """
        repo = self._get_repo()
        try:
            common_dir = repo.git.rev_parse("--git-common-dir").strip()
        except git.exc.GitCommandError as e:
            raise backend_error("rev-parse", e) from e
        if not os.path.isabs(common_dir):
            common_dir = os.path.join(repo.working_tree_dir, common_dir)

        exclude_path = os.path.join(common_dir, "info", "exclude")
        content = ""
        if os.path.exists(exclude_path):
            with open(exclude_path, encoding="utf-8") as f:
                content = f.read()
        if pattern in [line.strip() for line in content.splitlines()]:
            return False

        os.makedirs(os.path.dirname(exclude_path), exist_ok=True)
        with open(exclude_path, "a", encoding="utf-8") as f:
            if content and not content.endswith("\n"):
                f.write("\n")
            f.write(f"{pattern}\n")
        logger.debug(f"Added {pattern} to {exclude_path}")
        return True

    def prune(self) -> None:
        """Prune administrative entries of worktrees whose directory is gone."""
        try:
            self._get_repo().git.worktree("prune")
            logger.info("Pruned orphaned worktree metadata")
        except git.exc.GitCommandError as e:
            raise backend_error("worktree prune", e) from e
