"""Dev server models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


class DevServerStatus(Enum):
    """Lifecycle state of a dev server process."""
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"
    CRASHED = "crashed"

    @property
    def is_live(self) -> bool:
        """True for states that block another start."""
        return self in (DevServerStatus.STARTING, DevServerStatus.RUNNING)


@dataclass(frozen=True)
class DevServerInstance:
    """Point-in-time view of the dev server supervised for one worktree."""
    worktree_path: str
    pid: Optional[int]
    status: DevServerStatus
    command: Tuple[str, ...]
    port: Optional[int] = None
    url: Optional[str] = None
    exit_code: Optional[int] = None
    started_at: Optional[datetime] = None
    logs: Tuple[str, ...] = ()

    def to_dict(self, include_logs: bool = False) -> dict:
        data = {
            "worktreePath": self.worktree_path,
            "pid": self.pid,
            "status": self.status.value,
            "command": list(self.command),
            "port": self.port,
            "url": self.url,
            "exitCode": self.exit_code,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
        }
        if include_logs:
            data["logs"] = list(self.logs)
        return data
