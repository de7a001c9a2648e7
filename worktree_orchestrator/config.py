"""Configuration handling for worktree-orchestrator"""

from dataclasses import dataclass, field, fields
from typing import Dict, List, Optional

from worktree_orchestrator.constants import DEFAULT_INIT_SCRIPT_PATH, WORKTREES_DIR_NAME


@dataclass
class Config:
    """Configuration for worktree-orchestrator with validation."""

    # Worktree layout
    worktrees_dir: str = WORKTREES_DIR_NAME

    # Reconciliation
    reconcile_interval: float = 5.0  # seconds between ticks
    prune_orphaned: bool = True  # run `git worktree prune` when a directory vanished

    # Dev servers
    dev_server_command: Optional[List[str]] = None  # None = detect from lockfiles
    dev_server_commands: Dict[str, List[str]] = field(default_factory=dict)  # branch or path -> command
    dev_server_base_port: int = 3001
    dev_server_port_range: int = 100
    dev_server_grace_period: float = 5.0
    dev_server_log_lines: int = 1000
    dev_server_ready_timeout: float = 60.0

    # Init script
    init_script_path: str = DEFAULT_INIT_SCRIPT_PATH
    init_script_shell: str = "bash"

    # Execution
    workers: Optional[int] = None  # None = auto-detect
    verbose: bool = False
    debug: bool = False

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate_worktrees_dir()
        self._validate_reconcile_interval()
        self._validate_dev_server_command()
        self._validate_ports()
        self._validate_grace_period()
        self._validate_log_lines()
        self._validate_workers()

    def _validate_worktrees_dir(self):
        """Validate worktrees_dir is a single relative directory name."""
        name = (self.worktrees_dir or "").strip()
        if not name or name in (".", "..") or "/" in name or "\\" in name:
            raise ValueError(f"worktrees_dir must be a plain directory name, got '{self.worktrees_dir}'")
        self.worktrees_dir = name

    def _validate_reconcile_interval(self):
        """Validate reconcile_interval is positive."""
        if self.reconcile_interval <= 0:
            raise ValueError(f"reconcile_interval must be positive, got {self.reconcile_interval}")

    def _validate_dev_server_command(self):
        """Validate command lists are non-empty lists of strings."""
        commands = dict(self.dev_server_commands)
        if self.dev_server_command is not None:
            commands["<default>"] = self.dev_server_command
        for key, command in commands.items():
            if not isinstance(command, list) or not command or not all(isinstance(c, str) for c in command):
                raise ValueError(f"dev server command for '{key}' must be a non-empty list of strings")

    def _validate_ports(self):
        """Validate the dev server port window."""
        if not 1 <= self.dev_server_base_port <= 65535:
            raise ValueError(f"dev_server_base_port out of range: {self.dev_server_base_port}")
        if self.dev_server_port_range <= 0:
            raise ValueError(f"dev_server_port_range must be positive, got {self.dev_server_port_range}")
        if self.dev_server_base_port + self.dev_server_port_range - 1 > 65535:
            raise ValueError("dev server port window exceeds 65535")

    def _validate_grace_period(self):
        """Validate timeouts are not negative."""
        if self.dev_server_grace_period < 0:
            raise ValueError(f"dev_server_grace_period cannot be negative, got {self.dev_server_grace_period}")
        if self.dev_server_ready_timeout <= 0:
            raise ValueError(f"dev_server_ready_timeout must be positive, got {self.dev_server_ready_timeout}")

    def _validate_log_lines(self):
        """Validate dev_server_log_lines is positive."""
        if self.dev_server_log_lines <= 0:
            raise ValueError(f"dev_server_log_lines must be positive, got {self.dev_server_log_lines}")

    def _validate_workers(self):
        """Validate workers is positive when set."""
        if self.workers is not None and self.workers <= 0:
            raise ValueError(f"workers must be positive, got {self.workers}")

    def to_dict(self) -> dict:
        """Convert config to dictionary."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def get(self, key: str, default=None):
        """Get config value by key, so services accept a Config or a plain dict."""
        return getattr(self, key, default)

    @classmethod
    def from_dict(cls, config_dict: dict) -> "Config":
        """Create Config from dictionary, ignoring unknown keys."""
        known_fields = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in config_dict.items() if k in known_fields}
        return cls(**filtered)
