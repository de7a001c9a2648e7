"""Pytest fixtures for worktree-orchestrator tests"""
import sys
import tempfile
from pathlib import Path
import pytest
import git

from worktree_orchestrator.config import Config
from worktree_orchestrator.models.worktree import Worktree
from worktree_orchestrator.services.git.worktrees import WorktreeBackend
from worktree_orchestrator.services.registry import WorktreeRegistry


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        # Resolve so paths compare equal to what git prints (macOS /private/var)
        yield Path(tmpdir).resolve()


@pytest.fixture
def test_config():
    """Create a configuration with short timeouts for testing."""
    return Config(
        reconcile_interval=0.1,
        dev_server_base_port=43100,
        dev_server_port_range=50,
        dev_server_grace_period=2.0,
        dev_server_log_lines=50,
        dev_server_ready_timeout=5.0,
        init_script_shell="sh",
        workers=2,
    )


@pytest.fixture
def git_repo(temp_dir):
    """Create a real Git repository for testing."""
    repo_path = temp_dir / "test_repo"
    repo_path.mkdir()

    # Initialize repository
    repo = git.Repo.init(repo_path)

    # Configure git user for commits
    repo.config_writer().set_value("user", "name", "Test User").release()
    repo.config_writer().set_value("user", "email", "test@example.com").release()

    # Create initial commit on main branch
    test_file = repo_path / "README.md"
    test_file.write_text("# Test Repository\n")
    repo.index.add(["README.md"])
    repo.index.commit("Initial commit")

    # Rename master to main if needed
    try:
        repo.git.branch('-M', 'main')
    except Exception:
        pass

    yield repo

    # Cleanup
    repo.close()


@pytest.fixture
def git_repo_with_branches(git_repo):
    """Create a Git repository with extra local branches."""
    repo = git_repo
    repo_path = Path(repo.working_dir)

    repo.git.checkout('-b', 'feature/existing')
    feature_file = repo_path / "feature.txt"
    feature_file.write_text("Feature content\n")
    repo.index.add(["feature.txt"])
    repo.index.commit("Add feature")

    repo.git.checkout('main')
    repo.git.branch('bugfix/other')

    yield repo


@pytest.fixture
def repo_path(git_repo):
    """Working directory of the test repository as a string."""
    return str(Path(git_repo.working_dir).resolve())


@pytest.fixture
def backend(repo_path):
    """Worktree backend on the test repository."""
    return WorktreeBackend(repo_path)


@pytest.fixture
def registry(backend):
    """Registry seeded from the test repository."""
    return WorktreeRegistry(backend.list())


@pytest.fixture
def make_worktree():
    """Factory for Worktree values that are not backed by git."""
    def _make(path, branch="", is_main=False, **kwargs):
        return Worktree(path=str(path), branch=branch, is_main=is_main, **kwargs)
    return _make


@pytest.fixture
def python_command():
    """Factory for a dev server command running a Python snippet."""
    def _command(code):
        return [sys.executable, "-u", "-c", code]
    return _command
