"""Worktree init script discovery and execution."""

import os
import subprocess
from dataclasses import dataclass
from threading import Lock, Thread
from typing import TYPE_CHECKING, Callable, Dict, Optional, Union

from worktree_orchestrator.constants import (
    EVENT_INIT_COMPLETED,
    EVENT_INIT_OUTPUT,
    EVENT_INIT_STARTED,
)
from worktree_orchestrator.exceptions import AlreadyRunningError, ProcessError, WorktreeNotFoundError
from worktree_orchestrator.logging_config import get_logger
from worktree_orchestrator.utils.naming import normalize_path

if TYPE_CHECKING:
    from worktree_orchestrator.config import Config
    from worktree_orchestrator.services.event_service import EventBus

logger = get_logger(__name__)


@dataclass(frozen=True)
class InitScript:
    """The project's init script, if any."""
    path: str
    exists: bool
    content: Optional[str] = None


class InitScriptService:
    """Runs the project's init script inside a worktree.

    Execution is start-and-forget: ``run`` returns once the process is
    spawned, and progress is published on the event bus as
    ``worktree:init-started``, ``worktree:init-output`` and
    ``worktree:init-completed``.
    """

    def __init__(
        self,
        project_path: str,
        config: Union["Config", dict],
        events: Optional["EventBus"] = None,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ):
        self.project_path = project_path
        self.config = config
        self.events = events
        self._popen = popen
        self.script_path = os.path.join(
            project_path, config.get("init_script_path", ".worktree-orchestrator/worktree-init.sh")
        )
        self.shell = config.get("init_script_shell", "bash")
        self._running: Dict[str, Thread] = {}
        self._lock = Lock()

    def _emit(self, event_type: str, **payload) -> None:
        if self.events is not None:
            self.events.emit(event_type, **payload)

    def get_script(self) -> InitScript:
        """Describe the init script without running it."""
        if not os.path.isfile(self.script_path):
            return InitScript(path=self.script_path, exists=False)
        with open(self.script_path, encoding="utf-8", errors="replace") as f:
            return InitScript(path=self.script_path, exists=True, content=f.read())

    def is_running(self, worktree_path: str) -> bool:
        with self._lock:
            thread = self._running.get(normalize_path(worktree_path))
            return thread is not None and thread.is_alive()

    def run(self, worktree_path: str, branch: str) -> Thread:
        """Start the init script in ``worktree_path``.

        Returns:
            The thread following the script; join it to wait for completion

        Raises:
            WorktreeNotFoundError: no init script, or the worktree directory is missing
            AlreadyRunningError: the script is already running for this worktree
            ProcessError: the script could not be spawned
        """
        if not os.path.isfile(self.script_path):
            raise WorktreeNotFoundError(self.script_path, f"No init script at {self.script_path}")
        if not os.path.isdir(worktree_path):
            raise WorktreeNotFoundError(worktree_path)

        key = normalize_path(worktree_path)
        with self._lock:
            existing = self._running.get(key)
            if existing is not None and existing.is_alive():
                raise AlreadyRunningError(worktree_path, "running its init script")

            env = os.environ.copy()
            env.update({
                "PROJECT_PATH": self.project_path,
                "WORKTREE_PATH": worktree_path,
                "WORKTREE_BRANCH": branch,
            })
            try:
                process = self._popen(
                    [self.shell, self.script_path],
                    cwd=worktree_path,
                    env=env,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    text=True,
                    errors="replace",
                )
            except OSError as e:
                raise ProcessError("run_init_script", str(e)) from e

            thread = Thread(
                target=self._follow,
                args=(process, worktree_path, branch),
                name=f"init-script-{process.pid}",
                daemon=True,
            )
            self._running[key] = thread
            logger.info(f"Running init script for {branch} in {worktree_path}")
            self._emit(EVENT_INIT_STARTED, projectPath=self.project_path, worktreePath=worktree_path, branch=branch)
            thread.start()

        return thread

    def _follow(self, process: subprocess.Popen, worktree_path: str, branch: str) -> None:
        if process.stdout is not None:
            for raw_line in process.stdout:
                self._emit(
                    EVENT_INIT_OUTPUT,
                    projectPath=self.project_path,
                    worktreePath=worktree_path,
                    branch=branch,
                    content=raw_line.rstrip("\r\n"),
                )
            process.stdout.close()
        exit_code = process.wait()

        success = exit_code == 0
        if success:
            logger.info(f"Init script finished for {branch}")
        else:
            logger.warning(f"Init script for {branch} exited with code {exit_code}")
        self._emit(
            EVENT_INIT_COMPLETED,
            projectPath=self.project_path,
            worktreePath=worktree_path,
            branch=branch,
            success=success,
            exitCode=exit_code,
            error=None if success else f"Init script exited with code {exit_code}",
        )
