"""Tests for branch name to directory mapping and auto-mode keys"""
import os
import pytest

from worktree_orchestrator.models.auto_mode import AutoModeKey
from worktree_orchestrator.utils.naming import normalize_path, sanitize_branch_name, worktree_path_for


class TestSanitizeBranchName:
    """Test sanitize_branch_name."""

    @pytest.mark.parametrize("branch,expected", [
        ("main", "main"),
        ("feature/x", "feature-x"),
        ("feature/login-page", "feature-login-page"),
        ("fix.bug@v2", "fix-bug-v2"),
        ("under_score", "under_score"),
        ("a/b/c", "a-b-c"),
    ])
    def test_replaces_unsafe_characters(self, branch, expected):
        """Test every character outside [A-Za-z0-9_-] becomes a dash."""
        assert sanitize_branch_name(branch) == expected

    def test_idempotent(self):
        """Test sanitizing twice gives the same result."""
        once = sanitize_branch_name("feature/ümlaut.test")
        assert sanitize_branch_name(once) == once

    def test_collisions_are_possible(self):
        """Test distinct branches can map to the same directory."""
        assert sanitize_branch_name("feature/x") == sanitize_branch_name("feature.x")


class TestWorktreePathFor:
    """Test worktree_path_for."""

    def test_path_under_worktrees_dir(self, temp_dir):
        """Test the path is <base>/.worktrees/<sanitized>."""
        path = worktree_path_for(str(temp_dir), "feature/x")
        assert path == os.path.join(str(temp_dir), ".worktrees", "feature-x")

    def test_custom_worktrees_dir(self, temp_dir):
        """Test a configured directory name is used."""
        path = worktree_path_for(str(temp_dir), "a", "trees")
        assert path == os.path.join(str(temp_dir), "trees", "a")

    def test_normalize_path_resolves_relative_parts(self, temp_dir):
        """Test equivalent spellings normalize to the same key."""
        assert normalize_path(str(temp_dir / "x" / "..")) == normalize_path(str(temp_dir))


class TestAutoModeKey:
    """Test AutoModeKey string form."""

    def test_main_key_string(self):
        """Test a None branch renders as __main__."""
        assert str(AutoModeKey("/repo")) == "/repo::__main__"

    def test_branch_key_string(self):
        """Test a branch key renders project::branch."""
        assert str(AutoModeKey("/repo", "feature/x")) == "/repo::feature/x"

    def test_empty_branch_means_main(self):
        """Test an empty branch is the same key as None."""
        assert AutoModeKey("/repo", "") == AutoModeKey("/repo", None)

    def test_parse(self):
        """Test parsing both forms back into keys."""
        assert AutoModeKey.parse("/repo::__main__") == AutoModeKey("/repo")
        assert AutoModeKey.parse("/repo::feature/x") == AutoModeKey("/repo", "feature/x")

    def test_parse_invalid(self):
        """Test a string without separator is rejected."""
        with pytest.raises(ValueError):
            AutoModeKey.parse("no-separator")

    def test_empty_project_rejected(self):
        """Test a key needs a project id."""
        with pytest.raises(ValueError):
            AutoModeKey("")
