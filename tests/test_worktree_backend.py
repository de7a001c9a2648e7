"""Tests for WorktreeBackend"""
import os
import shutil
from pathlib import Path
from unittest.mock import Mock
import pytest
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
from worktree_orchestrator.services.git.worktrees import WorktreeBackend, parse_worktree_porcelain


PORCELAIN = """worktree /repo
HEAD 1111111111111111111111111111111111111111
branch refs/heads/main

worktree /repo/.worktrees/feature-x
HEAD 2222222222222222222222222222222222222222
branch refs/heads/feature/x

worktree /repo/.worktrees/detached
HEAD 3333333333333333333333333333333333333333
detached

worktree /repo/.worktrees/gone
HEAD 4444444444444444444444444444444444444444
branch refs/heads/gone
prunable gitdir file points to non-existent location
"""


def _target(repo_path, name):
    return os.path.join(repo_path, ".worktrees", name)


class TestParseWorktreePorcelain:
    """Test parsing of `git worktree list --porcelain`."""

    def test_parses_entries(self):
        """Test paths, branches and the main flag."""
        entries = parse_worktree_porcelain(PORCELAIN)
        assert [e["path"] for e in entries] == [
            "/repo", "/repo/.worktrees/feature-x", "/repo/.worktrees/detached", "/repo/.worktrees/gone",
        ]
        assert [e["is_main"] for e in entries] == [True, False, False, False]
        assert entries[1]["branch"] == "feature/x"
        assert entries[1]["HEAD"].startswith("2222")

    def test_detached_and_prunable(self):
        """Test detached HEAD yields an empty branch and prunable is flagged."""
        entries = parse_worktree_porcelain(PORCELAIN)
        assert entries[2]["branch"] == ""
        assert entries[3].get("prunable") is True
        assert not entries[0].get("prunable")

    def test_no_trailing_blank_line(self):
        """Test the last entry is kept without a trailing newline."""
        entries = parse_worktree_porcelain("worktree /repo\nHEAD abc\nbranch refs/heads/main")
        assert len(entries) == 1
        assert entries[0]["branch"] == "main"

    def test_empty_output(self):
        """Test empty output yields no entries."""
        assert parse_worktree_porcelain("") == []


class TestWorktreeBackendList:
    """Test listing worktrees from a real repository."""

    def test_list_main_only(self, backend, repo_path):
        """Test a fresh repository has just the main worktree."""
        worktrees = backend.list()
        assert len(worktrees) == 1
        assert worktrees[0].is_main
        assert worktrees[0].branch == "main"
        assert os.path.realpath(worktrees[0].path) == repo_path

    def test_not_a_repository(self, temp_dir):
        """Test a non-repository path raises BackendError."""
        with pytest.raises(BackendError):
            WorktreeBackend(str(temp_dir)).list()

    def test_orphaned_entries_hidden(self, backend, repo_path):
        """Test entries whose directory vanished are excluded by default."""
        path = _target(repo_path, "gone")
        backend.create("gone", path)
        shutil.rmtree(path)

        assert [wt.branch for wt in backend.list()] == ["main"]
        assert "gone" in [wt.branch for wt in backend.list(include_orphaned=True)]


class TestWorktreeBackendCreate:
    """Test worktree creation."""

    def test_create_new_branch(self, backend, repo_path, git_repo):
        """Test a missing branch is created from HEAD."""
        path = _target(repo_path, "feature-x")
        worktree = backend.create("feature/x", path)

        assert worktree.branch == "feature/x"
        assert not worktree.is_main
        assert os.path.isdir(path)
        assert "feature/x" in [h.name for h in git_repo.heads]
        assert len(backend.list()) == 2

    def test_create_existing_branch(self, git_repo_with_branches):
        """Test an existing branch is checked out, not recreated."""
        repo_path = str(Path(git_repo_with_branches.working_dir).resolve())
        backend = WorktreeBackend(repo_path)
        path = _target(repo_path, "feature-existing")

        worktree = backend.create("feature/existing", path)
        assert worktree.branch == "feature/existing"
        assert os.path.exists(os.path.join(path, "feature.txt"))

    def test_create_path_exists(self, backend, repo_path):
        """Test an occupied target directory raises PathExistsError."""
        path = _target(repo_path, "taken")
        os.makedirs(path)
        with pytest.raises(PathExistsError):
            backend.create("taken", path)

    def test_create_branch_checked_out_elsewhere(self, backend, repo_path):
        """Test checking out the main branch again raises BranchConflictError."""
        with pytest.raises(BranchConflictError):
            backend.create("main", _target(repo_path, "main-copy"))

    def test_validate_branch_name(self, backend):
        """Test git's ref format rules are applied."""
        backend.validate_branch_name("feature/ok")
        with pytest.raises(InvalidBranchNameError):
            backend.validate_branch_name("bad..name")
        with pytest.raises(InvalidBranchNameError):
            backend.validate_branch_name("   ")


class TestWorktreeBackendRemove:
    """Test worktree removal."""

    def test_remove_keeps_branch(self, backend, repo_path, git_repo):
        """Test removal without delete_branch keeps the branch."""
        path = _target(repo_path, "a")
        backend.create("a", path)
        backend.remove(path)

        assert not os.path.exists(path)
        assert "a" in [h.name for h in git_repo.heads]
        assert len(backend.list()) == 1

    def test_remove_deletes_branch(self, backend, repo_path, git_repo):
        """Test delete_branch also removes the branch."""
        path = _target(repo_path, "a")
        backend.create("a", path)
        backend.remove(path, delete_branch=True)
        assert "a" not in [h.name for h in git_repo.heads]

    def test_remove_dirty_requires_force(self, backend, repo_path):
        """Test uncommitted changes block removal unless forced."""
        path = _target(repo_path, "dirty")
        backend.create("dirty", path)
        Path(path, "untracked.txt").write_text("work in progress\n")

        with pytest.raises(WorktreeInUseError):
            backend.remove(path)
        assert os.path.isdir(path)

        backend.remove(path, force=True)
        assert not os.path.exists(path)

    def test_remove_main(self, backend, repo_path):
        """Test the main worktree cannot be removed."""
        with pytest.raises(CannotDeleteMainError):
            backend.remove(repo_path)

    def test_remove_unknown(self, backend, repo_path):
        """Test an unknown path raises WorktreeNotFoundError."""
        with pytest.raises(WorktreeNotFoundError):
            backend.remove(_target(repo_path, "nope"))

    def test_remove_already_deleted_directory(self, backend, repo_path):
        """Test an orphaned entry is pruned instead of failing."""
        path = _target(repo_path, "gone")
        backend.create("gone", path)
        shutil.rmtree(path)

        backend.remove(path)
        assert len(backend.list(include_orphaned=True)) == 1


class TestWorktreeBackendQueries:
    """Test branch and status queries."""

    def test_current_branch(self, backend, repo_path):
        """Test the checked out branch is reported."""
        path = _target(repo_path, "a")
        backend.create("a", path)
        assert backend.current_branch(path) == "a"
        assert backend.current_branch(repo_path) == "main"

    def test_current_branch_detached(self, backend, repo_path, git_repo):
        """Test a detached HEAD reports an empty branch."""
        git_repo.git.checkout("--detach")
        assert backend.current_branch(repo_path) == ""

    def test_ahead_behind_without_upstream(self, backend, repo_path):
        """Test a branch without upstream is (0, 0)."""
        assert backend.ahead_behind(repo_path) == (0, 0)

    def test_change_count(self, backend, repo_path):
        """Test modified and untracked files are counted."""
        assert backend.change_count(repo_path) == 0
        Path(repo_path, "README.md").write_text("changed\n")
        Path(repo_path, "new.txt").write_text("new\n")
        assert backend.change_count(repo_path) == 2

    def test_switch_branch(self, git_repo_with_branches):
        """Test an in-place checkout in a linked worktree."""
        repo_path = str(Path(git_repo_with_branches.working_dir).resolve())
        backend = WorktreeBackend(repo_path)
        path = _target(repo_path, "work")
        backend.create("work", path)

        backend.switch_branch(path, "bugfix/other")
        assert backend.current_branch(path) == "bugfix/other"

    def test_switch_to_missing_branch(self, backend, repo_path):
        """Test switching to an unknown branch raises WorktreeNotFoundError."""
        with pytest.raises(WorktreeNotFoundError):
            backend.switch_branch(repo_path, "does-not-exist")

    def test_switch_with_tracked_changes(self, git_repo_with_branches):
        """Test tracked modifications block switching."""
        repo_path = str(Path(git_repo_with_branches.working_dir).resolve())
        backend = WorktreeBackend(repo_path)
        Path(repo_path, "README.md").write_text("changed\n")
        with pytest.raises(WorktreeInUseError):
            backend.switch_branch(repo_path, "bugfix/other")

    def test_switch_to_branch_checked_out_elsewhere(self, git_repo_with_branches):
        """Test a branch active in another worktree raises BranchInUseError."""
        repo_path = str(Path(git_repo_with_branches.working_dir).resolve())
        backend = WorktreeBackend(repo_path)
        path_a = _target(repo_path, "a")
        path_b = _target(repo_path, "b")
        backend.create("a", path_a)
        backend.create("b", path_b)
        git.Repo(path_a).git.checkout("bugfix/other")

        with pytest.raises(BranchInUseError) as exc_info:
            backend.switch_branch(path_b, "bugfix/other")
        assert exc_info.value.worktree_path == path_a
        assert backend.current_branch(path_b) == "b"

    def test_checkout_conflict_maps_to_branch_in_use(self, backend, repo_path, monkeypatch):
        """Test git's checked-out-elsewhere error is reported as BranchInUseError."""
        monkeypatch.setattr(backend, "branch_exists", lambda branch: True)
        monkeypatch.setattr(backend, "has_tracked_changes", lambda path: False)
        monkeypatch.setattr(backend, "list", lambda include_orphaned=False: [])
        monkeypatch.setattr(
            backend,
            "_run_in",
            Mock(side_effect=git.exc.GitCommandError(
                ["git", "checkout", "x"], 128, stderr="fatal: 'x' is already checked out at '/elsewhere/x'"
            )),
        )
        with pytest.raises(BranchInUseError) as exc_info:
            backend.switch_branch(repo_path, "x")
        assert exc_info.value.worktree_path == "/elsewhere/x"

    def test_backend_error_keeps_git_details(self, backend, monkeypatch):
        """Test GitCommandError details are carried on BackendError."""
        repo = Mock()
        repo.git.worktree.side_effect = git.exc.GitCommandError(
            ["git", "worktree", "prune"], 128, stderr="fatal: boom"
        )
        monkeypatch.setattr(backend, "_get_repo", lambda: repo)
        with pytest.raises(BackendError) as exc_info:
            backend.prune()
        assert exc_info.value.status == 128
        assert "boom" in exc_info.value.stderr


class TestWorktreeBackendExclude:
    """Test keeping the worktrees directory out of git status."""

    def test_ensure_excluded_hides_worktrees(self, backend, repo_path):
        """Test linked worktrees stop showing up as untracked in main."""
        backend.create("a", _target(repo_path, "a"))
        assert backend.change_count(repo_path) == 1

        assert backend.ensure_excluded("/.worktrees/") is True
        assert backend.change_count(repo_path) == 0

    def test_ensure_excluded_is_idempotent(self, backend, repo_path):
        """Test the pattern is written once."""
        backend.ensure_excluded("/.worktrees/")
        assert backend.ensure_excluded("/.worktrees/") is False

        with open(os.path.join(repo_path, ".git", "info", "exclude"), encoding="utf-8") as f:
            assert [line.strip() for line in f].count("/.worktrees/") == 1
