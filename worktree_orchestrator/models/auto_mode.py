"""Auto-mode models."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from worktree_orchestrator.constants import AUTO_MODE_KEY_SEPARATOR, AUTO_MODE_MAIN_KEY


@dataclass(frozen=True)
class AutoModeKey:
    """Identity of an auto-mode run: a project and a branch (None = main worktree)."""
    project_id: str
    branch: Optional[str] = None

    def __post_init__(self):
        if not self.project_id:
            raise ValueError("project_id cannot be empty")
        if self.branch == "":
            # An empty branch name means the main worktree
            object.__setattr__(self, "branch", None)

    @classmethod
    def parse(cls, value: str) -> "AutoModeKey":
        """Parse the '<project>::<branch>' string form."""
        project_id, sep, branch = value.rpartition(AUTO_MODE_KEY_SEPARATOR)
        if not sep:
            raise ValueError(f"Not an auto-mode key: {value!r}")
        return cls(project_id, None if branch == AUTO_MODE_MAIN_KEY else branch)

    def __str__(self) -> str:
        return f"{self.project_id}{AUTO_MODE_KEY_SEPARATOR}{self.branch or AUTO_MODE_MAIN_KEY}"


@dataclass
class AutoModeRun:
    """Running state of auto-mode for one key."""
    key: AutoModeKey
    is_running: bool = False
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None
