"""Periodic reconciliation of the worktree registry against git."""

import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace as dataclass_replace
from threading import Event, Lock, Thread
from typing import TYPE_CHECKING, Callable, List, Optional, Set, Union

from worktree_orchestrator.exceptions import BackendError
from worktree_orchestrator.logging_config import get_logger
from worktree_orchestrator.models.worktree import Worktree
from worktree_orchestrator.services.git.worktrees import WorktreeBackend
from worktree_orchestrator.services.registry import WorktreeRegistry
from worktree_orchestrator.utils.naming import normalize_path
from worktree_orchestrator.utils.threading import get_optimal_worker_count

if TYPE_CHECKING:
    from worktree_orchestrator.config import Config

logger = get_logger(__name__)

RemovedCallback = Callable[[List[Worktree]], None]


class ReconciliationLoop:
    """Re-derives the registry from git on a fixed interval.

    Each tick lists worktrees, refreshes their change counts, reports the
    worktrees that disappeared since the previous snapshot to ``on_removed``
    and then publishes the new snapshot. New worktrees are added silently.
    """

    def __init__(
        self,
        backend: WorktreeBackend,
        registry: WorktreeRegistry,
        config: Union["Config", dict],
        on_removed: Optional[RemovedCallback] = None,
        name: str = "reconcile",
        busy_paths: Optional[Callable[[], Set[str]]] = None,
    ):
        self.backend = backend
        self.registry = registry
        self.config = config
        self.on_removed = on_removed
        self.busy_paths = busy_paths
        self.interval = config.get("reconcile_interval", 5.0)
        self.prune_orphaned = config.get("prune_orphaned", True)
        self.workers = config.get("workers", None)
        self.name = name
        self._tick_lock = Lock()
        self._stop_event = Event()
        self._thread: Optional[Thread] = None
        self.ticks = 0
        self.skipped_ticks = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the background thread (no-op if already running)."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = Thread(target=self._run, name=f"{self.name}-loop", daemon=True)
        self._thread.start()
        logger.info(f"Reconciliation started (every {self.interval}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the background thread and wait for the tick in flight."""
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Reconciliation stopped")

    def _run(self) -> None:
        while not self._stop_event.wait(timeout=self.interval):
            try:
                self.tick()
            except Exception as e:
                # The loop must survive anything a single tick throws
                logger.error(f"Reconciliation tick failed: {e}")

    def tick(self) -> Optional[List[Worktree]]:
        """Run one reconciliation pass.

        Returns:
            Worktrees removed since the previous snapshot, or None when the
            tick was skipped (another tick in flight), git failed, or a
            concurrent registry write made this pass stale
        """
        if not self._tick_lock.acquire(blocking=False):
            self.skipped_ticks += 1
            logger.debug("Reconciliation tick skipped, previous tick still running")
            return None
        try:
            return self._reconcile()
        finally:
            self._tick_lock.release()

    def _reconcile(self) -> Optional[List[Worktree]]:
        previous, generation = self.registry.snapshot_with_generation()

        try:
            listed = self.backend.list(include_orphaned=True)
        except BackendError as e:
            logger.warning(f"Could not list worktrees, keeping last snapshot: {e}")
            return None

        live = [wt for wt in listed if wt.is_main or os.path.isdir(wt.path)]
        if len(live) != len(listed) and self.prune_orphaned:
            try:
                self.backend.prune()
            except BackendError as e:
                logger.warning(f"Could not prune orphaned worktrees: {e}")

        current = self._with_change_counts(live)

        busy = self.busy_paths() if self.busy_paths is not None else set()
        if busy:
            # Paths under create/delete keep their last published entry
            current = [wt for wt in current if normalize_path(wt.path) not in busy]
            current += [wt for wt in previous if normalize_path(wt.path) in busy]

        current_paths = {normalize_path(wt.path) for wt in current}
        removed = [wt for wt in previous if normalize_path(wt.path) not in current_paths]

        if removed and self.registry.generation != generation:
            # A create/delete landed while git was being queried
            logger.debug("Registry changed during reconciliation, retrying on next tick")
            return None

        if removed and self.on_removed is not None:
            logger.info(f"{len(removed)} worktree(s) removed externally: {[wt.path for wt in removed]}")
            self.on_removed(removed)

        if not self.registry.replace(current, expected_generation=generation):
            if not removed:
                return None
            # Already reported, so drop them from the newer snapshot instead
            self.registry.discard(removed)

        self.ticks += 1
        return removed

    def _change_counts(self, worktree: Worktree) -> Worktree:
        try:
            count = self.backend.change_count(worktree.path)
        except BackendError as e:
            logger.debug(f"Could not read status of {worktree.path}: {e}")
            return worktree
        return dataclass_replace(worktree, has_changes=count > 0, changed_files_count=count)

    def _with_change_counts(self, worktrees: List[Worktree]) -> List[Worktree]:
        if len(worktrees) <= 1:
            return [self._change_counts(wt) for wt in worktrees]
        max_workers = get_optimal_worker_count(self.workers, task_count=len(worktrees))
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            return list(executor.map(self._change_counts, worktrees))
