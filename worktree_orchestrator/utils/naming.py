"""Branch name to worktree directory mapping."""

import os

from worktree_orchestrator.constants import SAFE_DIRECTORY_CHARS, WORKTREES_DIR_NAME


def sanitize_branch_name(branch_name: str) -> str:
    """Map a branch name to a filesystem-safe directory segment.

    Every character outside ``[A-Za-z0-9_-]`` becomes ``-``, so
    ``feature/login`` maps to ``feature-login``. The mapping is pure and
    idempotent. Distinct branches can map to the same segment
    (``feature/x`` and ``feature.x``); callers treat that as a path conflict.
    """
    return SAFE_DIRECTORY_CHARS.sub("-", branch_name)


def worktree_path_for(base_path: str, branch_name: str, worktrees_dir: str = WORKTREES_DIR_NAME) -> str:
    """Absolute target directory for a branch's worktree under ``base_path``."""
    # realpath so the result compares equal to what `git worktree list` prints
    return os.path.join(os.path.realpath(base_path), worktrees_dir, sanitize_branch_name(branch_name))


def normalize_path(path: str) -> str:
    """Canonical form used to compare worktree paths."""
    return os.path.normcase(os.path.realpath(path))
