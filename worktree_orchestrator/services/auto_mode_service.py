"""Auto-mode state machine keyed by project and branch."""

from dataclasses import replace as dataclass_replace
from datetime import datetime, timezone
from threading import Lock
from typing import TYPE_CHECKING, Dict, List, Optional

from worktree_orchestrator.constants import EVENT_AUTO_MODE_STARTED, EVENT_AUTO_MODE_STOPPED
from worktree_orchestrator.exceptions import AutoModeError
from worktree_orchestrator.logging_config import get_logger
from worktree_orchestrator.models.auto_mode import AutoModeKey, AutoModeRun

if TYPE_CHECKING:
    from worktree_orchestrator.services.event_service import EventBus

logger = get_logger(__name__)


class AutoModeRunner:
    """Hook into the external loop that actually executes auto-mode work.

    The default implementation only logs; integrations subclass it.
    """

    def on_start(self, key: AutoModeKey) -> None:
        logger.info(f"Auto-mode loop requested for {key}")

    def on_stop(self, key: AutoModeKey) -> None:
        logger.info(f"Auto-mode loop halt requested for {key}")


class AutoModeController:
    """Tracks which (project, branch) pairs have auto-mode running.

    Runs are keyed by branch name rather than by worktree, so a run can be
    stopped after its worktree has been deleted. Transitions are idempotent.
    """

    def __init__(self, runner: Optional[AutoModeRunner] = None, events: Optional["EventBus"] = None):
        self.runner = runner or AutoModeRunner()
        self.events = events
        self._runs: Dict[AutoModeKey, AutoModeRun] = {}
        self._lock = Lock()

    def start(self, key: AutoModeKey) -> AutoModeRun:
        """Move ``key`` to running; a no-op if it already is.

        Raises:
            AutoModeError: the runner refused to start (state stays stopped)
        """
        with self._lock:
            run = self._runs.setdefault(key, AutoModeRun(key))
            if run.is_running:
                logger.debug(f"Auto-mode already running for {key}")
                return dataclass_replace(run)
            run.is_running = True
            run.started_at = datetime.now(timezone.utc)
            run.stopped_at = None
            try:
                self.runner.on_start(key)
            except Exception as e:
                run.is_running = False
                run.started_at = None
                raise AutoModeError(f"Failed to start auto-mode for {key}: {e}") from e
            started = dataclass_replace(run)

        logger.info(f"Auto-mode started for {key}")
        if self.events is not None:
            self.events.emit(EVENT_AUTO_MODE_STARTED, key=str(key), projectId=key.project_id, branch=key.branch)
        return started

    def stop(self, key: AutoModeKey) -> Optional[AutoModeRun]:
        """Move ``key`` to stopped; a no-op for stopped or unknown keys.

        Never depends on the branch or worktree still existing. A runner
        failure is logged and the run is stopped anyway.
        """
        with self._lock:
            run = self._runs.get(key)
            if run is None or not run.is_running:
                return dataclass_replace(run) if run is not None else None
            run.is_running = False
            run.stopped_at = datetime.now(timezone.utc)
            try:
                self.runner.on_stop(key)
            except Exception as e:
                logger.warning(f"Auto-mode runner failed to halt {key}: {e}")
            stopped = dataclass_replace(run)

        logger.info(f"Auto-mode stopped for {key}")
        if self.events is not None:
            self.events.emit(EVENT_AUTO_MODE_STOPPED, key=str(key), projectId=key.project_id, branch=key.branch)
        return stopped

    def toggle(self, key: AutoModeKey) -> bool:
        """Flip ``key``; returns the new running state."""
        if self.is_running(key):
            self.stop(key)
            return False
        self.start(key)
        return True

    def is_running(self, key: AutoModeKey) -> bool:
        with self._lock:
            run = self._runs.get(key)
            return run is not None and run.is_running

    def get(self, key: AutoModeKey) -> Optional[AutoModeRun]:
        with self._lock:
            run = self._runs.get(key)
            return dataclass_replace(run) if run is not None else None

    def running_keys(self, project_id: Optional[str] = None) -> List[AutoModeKey]:
        """Keys currently running, optionally for one project."""
        with self._lock:
            return [
                key for key, run in self._runs.items()
                if run.is_running and (project_id is None or key.project_id == project_id)
            ]

    def stop_all(self, project_id: Optional[str] = None) -> None:
        for key in self.running_keys(project_id):
            self.stop(key)
