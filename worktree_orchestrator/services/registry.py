"""In-memory registry of the worktrees known for one project."""

from dataclasses import replace as dataclass_replace
from threading import Lock
from typing import Iterable, List, Optional, Tuple

from worktree_orchestrator.logging_config import get_logger
from worktree_orchestrator.models.worktree import Worktree
from worktree_orchestrator.utils.naming import normalize_path

logger = get_logger(__name__)


class WorktreeRegistry:
    """Last-known-good snapshot of a project's worktrees.

    Readers get an immutable tuple; writers publish a whole new tuple under a
    lock, so a reader never sees a half-applied change. Every publish bumps
    ``generation``.
    """

    def __init__(self, worktrees: Iterable[Worktree] = ()):
        self._lock = Lock()
        self._snapshot: Tuple[Worktree, ...] = ()
        self._generation = 0
        worktrees = tuple(worktrees)
        if worktrees:
            self.replace(worktrees)

    @property
    def generation(self) -> int:
        """Number of snapshots published so far."""
        with self._lock:
            return self._generation

    def snapshot(self) -> Tuple[Worktree, ...]:
        """Current worktrees, main first."""
        with self._lock:
            return self._snapshot

    def snapshot_with_generation(self) -> Tuple[Tuple[Worktree, ...], int]:
        """Current worktrees together with the generation they belong to."""
        with self._lock:
            return self._snapshot, self._generation

    @staticmethod
    def _validate(worktrees: Tuple[Worktree, ...]) -> Tuple[Worktree, ...]:
        """Check the registry invariants and order main first."""
        mains = [wt for wt in worktrees if wt.is_main]
        if len(mains) != 1:
            raise ValueError(f"Expected exactly one main worktree, got {len(mains)}")

        seen_paths = set()
        seen_branches = set()
        for wt in worktrees:
            key = normalize_path(wt.path)
            if key in seen_paths:
                raise ValueError(f"Duplicate worktree path: {wt.path}")
            seen_paths.add(key)
            if wt.branch:
                if wt.branch in seen_branches:
                    raise ValueError(f"Duplicate worktree branch: {wt.branch}")
                seen_branches.add(wt.branch)

        return tuple(mains) + tuple(wt for wt in worktrees if not wt.is_main)

    def _publish(self, worktrees: Tuple[Worktree, ...]) -> None:
        # Caller holds self._lock
        self._snapshot = worktrees
        self._generation += 1

    def replace(self, worktrees: Iterable[Worktree], expected_generation: Optional[int] = None) -> bool:
        """Atomically replace the whole snapshot.

        Args:
            worktrees: New list of worktrees
            expected_generation: Only publish if nothing was published since
                this generation was read

        Returns:
            True if published, False if another writer got there first
        """
        validated = self._validate(tuple(worktrees))
        with self._lock:
            if expected_generation is not None and expected_generation != self._generation:
                logger.debug(
                    f"Discarding stale snapshot (generation {expected_generation}, now {self._generation})"
                )
                return False
            self._publish(validated)
            return True

    def insert(self, worktree: Worktree) -> None:
        """Add a worktree confirmed by the backend.

        If a reconciliation pass already published the same worktree (same
        path and branch), its entry is replaced instead of duplicated.
        """
        key = normalize_path(worktree.path)
        with self._lock:
            existing = next((wt for wt in self._snapshot if normalize_path(wt.path) == key), None)
            if existing is not None and existing.branch == worktree.branch and existing.is_main == worktree.is_main:
                updated = tuple(worktree if wt is existing else wt for wt in self._snapshot)
            else:
                updated = self._snapshot + (worktree,)
            self._publish(self._validate(updated))

    def update(self, worktree: Worktree) -> None:
        """Swap the entry with the same path for ``worktree``."""
        key = normalize_path(worktree.path)
        with self._lock:
            if not any(normalize_path(wt.path) == key for wt in self._snapshot):
                raise KeyError(worktree.path)
            updated = tuple(worktree if normalize_path(wt.path) == key else wt for wt in self._snapshot)
            self._publish(self._validate(updated))

    def update_branch(self, path: str, branch: str) -> Optional[Worktree]:
        """Record that ``path`` now has ``branch`` checked out."""
        key = normalize_path(path)
        with self._lock:
            current = next((wt for wt in self._snapshot if normalize_path(wt.path) == key), None)
            if current is None:
                return None
            updated = dataclass_replace(current, branch=branch)
            self._publish(self._validate(tuple(updated if wt is current else wt for wt in self._snapshot)))
            return updated

    def remove(self, path: str) -> Optional[Worktree]:
        """Drop the worktree at ``path``; returns it, or None if it was not registered."""
        key = normalize_path(path)
        with self._lock:
            removed = next((wt for wt in self._snapshot if normalize_path(wt.path) == key), None)
            if removed is None:
                return None
            if removed.is_main:
                raise ValueError("The main worktree cannot be removed from the registry")
            self._publish(tuple(wt for wt in self._snapshot if wt is not removed))
            return removed

    def discard(self, worktrees: Iterable[Worktree]) -> List[Worktree]:
        """Drop entries that still match ``worktrees`` by path and branch.

        Entries that were re-created or switched since are kept.

        Returns:
            The entries actually dropped
        """
        wanted = {(normalize_path(wt.path), wt.branch) for wt in worktrees if not wt.is_main}
        with self._lock:
            dropped = [
                wt for wt in self._snapshot
                if not wt.is_main and (normalize_path(wt.path), wt.branch) in wanted
            ]
            if dropped:
                self._publish(tuple(wt for wt in self._snapshot if wt not in dropped))
            return dropped

    def get(self, path: str) -> Optional[Worktree]:
        """Look up a worktree by path."""
        key = normalize_path(path)
        return next((wt for wt in self.snapshot() if normalize_path(wt.path) == key), None)

    def find_by_branch(self, branch: str) -> Optional[Worktree]:
        """Look up the worktree that has ``branch`` checked out."""
        if not branch:
            return None
        return next((wt for wt in self.snapshot() if wt.branch == branch), None)

    def main(self) -> Optional[Worktree]:
        """The main worktree, or None before the first snapshot."""
        return next((wt for wt in self.snapshot() if wt.is_main), None)

    def __len__(self) -> int:
        return len(self.snapshot())
