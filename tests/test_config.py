"""Tests for Config"""
import pytest

from worktree_orchestrator.config import Config


class TestConfigDefaults:
    """Test default values."""

    def test_defaults(self):
        """Test the documented defaults."""
        config = Config()
        assert config.worktrees_dir == ".worktrees"
        assert config.reconcile_interval == 5.0
        assert config.dev_server_base_port == 3001
        assert config.dev_server_command is None
        assert config.init_script_path == ".worktree-orchestrator/worktree-init.sh"

    def test_get_like_dict(self):
        """Test Config.get mirrors dict.get."""
        config = Config()
        assert config.get("reconcile_interval") == 5.0
        assert config.get("unknown", "fallback") == "fallback"

    def test_round_trip_ignores_unknown(self):
        """Test from_dict drops keys it does not know."""
        config = Config.from_dict({"reconcile_interval": 1.5, "legacy_option": "x"})
        assert config.reconcile_interval == 1.5
        assert "legacy_option" not in config.to_dict()


class TestConfigValidation:
    """Test __post_init__ validation."""

    @pytest.mark.parametrize("kwargs", [
        {"worktrees_dir": ""},
        {"worktrees_dir": "a/b"},
        {"worktrees_dir": ".."},
        {"reconcile_interval": 0},
        {"dev_server_command": []},
        {"dev_server_commands": {"main": "npm run dev"}},
        {"dev_server_base_port": 0},
        {"dev_server_base_port": 65535, "dev_server_port_range": 10},
        {"dev_server_port_range": 0},
        {"dev_server_grace_period": -1},
        {"dev_server_ready_timeout": 0},
        {"dev_server_log_lines": 0},
        {"workers": 0},
    ])
    def test_invalid_values(self, kwargs):
        """Test invalid settings raise ValueError."""
        with pytest.raises(ValueError):
            Config(**kwargs)

    def test_worktrees_dir_trimmed(self):
        """Test surrounding whitespace is removed."""
        assert Config(worktrees_dir="  trees ").worktrees_dir == "trees"
