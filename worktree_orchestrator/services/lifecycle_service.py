"""Service for creating and deleting worktrees"""

import os
from contextlib import contextmanager
from threading import Lock
from typing import TYPE_CHECKING, Dict, Optional, Set, Union

from worktree_orchestrator.exceptions import (
    AlreadyExistsError,
    BackendError,
    CannotDeleteMainError,
    PathExistsError,
    ProcessError,
    WorktreeNotFoundError,
)
from worktree_orchestrator.logging_config import get_logger
from worktree_orchestrator.models.worktree import Worktree
from worktree_orchestrator.services.git.worktrees import WorktreeBackend
from worktree_orchestrator.services.registry import WorktreeRegistry
from worktree_orchestrator.utils.naming import normalize_path, worktree_path_for

if TYPE_CHECKING:
    from worktree_orchestrator.config import Config
    from worktree_orchestrator.services.dev_server_service import DevServerSupervisor

logger = get_logger(__name__)


class LifecycleManager:
    """Creates and deletes worktrees and keeps the registry in step with git."""

    def __init__(
        self,
        repo_path: str,
        config: Union["Config", dict],
        backend: WorktreeBackend,
        registry: WorktreeRegistry,
        dev_servers: Optional["DevServerSupervisor"] = None,
    ):
        """Initialize the service.

        Args:
            repo_path: Project root (main working tree)
            config: Configuration dictionary or Config object
            backend: Git worktree backend
            registry: Registry to update after confirmed mutations
            dev_servers: Supervisor whose servers are stopped before deletion
        """
        self.repo_path = repo_path
        self.config = config
        self.backend = backend
        self.registry = registry
        self.dev_servers = dev_servers
        self.worktrees_dir = config.get("worktrees_dir", ".worktrees")
        self._path_locks: Dict[str, Lock] = {}
        self._path_locks_guard = Lock()
        self._busy: Set[str] = set()

    @contextmanager
    def _path_lock(self, path: str):
        """Serialize create/delete on one path; other paths are not blocked."""
        key = normalize_path(path)
        with self._path_locks_guard:
            lock = self._path_locks.setdefault(key, Lock())
        with lock:
            with self._path_locks_guard:
                self._busy.add(key)
            try:
                yield
            finally:
                with self._path_locks_guard:
                    self._busy.discard(key)

    def busy_paths(self) -> Set[str]:
        """Normalized paths with a create or delete in progress."""
        with self._path_locks_guard:
            return set(self._busy)

    def target_path(self, branch: str, base_path: Optional[str] = None) -> str:
        """Directory a worktree for ``branch`` would be created in."""
        return worktree_path_for(base_path or self.repo_path, branch, self.worktrees_dir)

    def create_worktree(self, branch: str, base_path: Optional[str] = None) -> Worktree:
        """Create a worktree for ``branch`` under ``<base>/.worktrees/``.

        Args:
            branch: Branch to check out; created from HEAD if it does not exist
            base_path: Project root; defaults to the repository path

        Returns:
            The new worktree, already present in the registry

        Raises:
            InvalidBranchNameError: git rejects the branch name
            AlreadyExistsError: the registry already has a worktree for ``branch``
            PathExistsError: the target directory is taken, e.g. by a branch
                whose name sanitizes to the same directory
            BranchConflictError, BackendError: propagated from the backend
        """
        branch = branch.strip()
        self.backend.validate_branch_name(branch)
        path = self.target_path(branch, base_path)

        with self._path_lock(path):
            existing = self.registry.find_by_branch(branch)
            if existing is not None:
                raise AlreadyExistsError(branch, existing.path)

            occupant = self.registry.get(path)
            if occupant is not None:
                # Two branch names sanitized to the same directory
                raise PathExistsError(path, f"used by branch '{occupant.branch}'")
            if os.path.lexists(path):
                raise PathExistsError(path)

            self._exclude_worktrees_dir()
            logger.info(f"Creating worktree for {branch} at {path}")
            worktree = self.backend.create(branch, path)
            self.registry.insert(worktree)
            return worktree

    def delete_worktree(self, path: str, delete_branch: bool = False, force: bool = False) -> Worktree:
        """Delete a worktree and optionally its branch.

        A dev server running in the worktree is stopped first. That stop is
        best-effort: a failure is logged and the deletion goes ahead.

        Args:
            path: Worktree directory
            delete_branch: Also delete the branch it had checked out
            force: Remove even with uncommitted changes

        Returns:
            The removed worktree

        Raises:
            CannotDeleteMainError: ``path`` is the main worktree
            WorktreeNotFoundError: nothing is registered at ``path``
            WorktreeInUseError: uncommitted changes and ``force`` is False
            BackendError: propagated from the backend
        """
        with self._path_lock(path):
            worktree = self.registry.get(path)
            if worktree is None:
                raise WorktreeNotFoundError(path)
            if worktree.is_main:
                raise CannotDeleteMainError(worktree.path)

            self._stop_dev_server(worktree.path)

            try:
                self.backend.remove(worktree.path, delete_branch=delete_branch, force=force)
            except BackendError as e:
                if e.operation != "delete_branch":
                    raise
                # Worktree is gone even though its branch survived
                self.registry.remove(worktree.path)
                self._mark_dev_server_orphaned(worktree.path)
                raise

            self.registry.remove(worktree.path)
            self._mark_dev_server_orphaned(worktree.path)
            logger.info(
                f"Deleted worktree {worktree.path}"
                + (f" and branch {worktree.branch}" if delete_branch and worktree.branch else "")
            )
            return worktree

    def _exclude_worktrees_dir(self) -> None:
        # Otherwise the main worktree lists every linked worktree as untracked
        try:
            self.backend.ensure_excluded(f"/{self.worktrees_dir}/")
        except BackendError as e:
            logger.warning(f"Could not add {self.worktrees_dir} to info/exclude: {e}")

    def _stop_dev_server(self, path: str) -> None:
        if self.dev_servers is None:
            return
        instance = self.dev_servers.status(path)
        if instance is None or not instance.status.is_live:
            return
        try:
            self.dev_servers.stop(path)
        except ProcessError as e:
            logger.warning(f"Could not stop dev server for {path} before deletion: {e}")

    def _mark_dev_server_orphaned(self, path: str) -> None:
        if self.dev_servers is not None:
            self.dev_servers.handle_worktree_removed(path)
