"""Tests for WorktreeRegistry"""
import pytest

from worktree_orchestrator.services.registry import WorktreeRegistry


@pytest.fixture
def seeded(make_worktree):
    return WorktreeRegistry([
        make_worktree("/repo", "main", is_main=True),
        make_worktree("/repo/.worktrees/a", "a"),
    ])


class TestRegistryInvariants:
    """Test snapshot validation."""

    def test_main_first(self, make_worktree):
        """Test the main worktree is moved to the front."""
        registry = WorktreeRegistry([
            make_worktree("/repo/.worktrees/a", "a"),
            make_worktree("/repo", "main", is_main=True),
        ])
        assert [wt.branch for wt in registry.snapshot()] == ["main", "a"]

    def test_exactly_one_main(self, make_worktree):
        """Test zero or two main worktrees are rejected."""
        registry = WorktreeRegistry()
        with pytest.raises(ValueError):
            registry.replace([make_worktree("/a", "a")])
        with pytest.raises(ValueError):
            registry.replace([make_worktree("/a", "a", is_main=True), make_worktree("/b", "b", is_main=True)])

    def test_duplicate_branch_rejected(self, seeded, make_worktree):
        """Test two worktrees cannot share a branch."""
        with pytest.raises(ValueError):
            seeded.insert(make_worktree("/repo/.worktrees/other", "a"))
        assert len(seeded) == 2

    def test_duplicate_path_rejected(self, seeded, make_worktree):
        """Test two worktrees cannot share a path."""
        with pytest.raises(ValueError):
            seeded.insert(make_worktree("/repo/.worktrees/a", "b"))

    def test_detached_worktrees_may_coexist(self, seeded, make_worktree):
        """Test detached (empty branch) entries do not collide."""
        seeded.insert(make_worktree("/repo/.worktrees/d1", ""))
        seeded.insert(make_worktree("/repo/.worktrees/d2", ""))
        assert len(seeded) == 4


class TestRegistryPublication:
    """Test atomic, monotonic publication."""

    def test_generation_increases(self, seeded, make_worktree):
        """Test every write bumps the generation."""
        before = seeded.generation
        seeded.insert(make_worktree("/repo/.worktrees/b", "b"))
        seeded.remove("/repo/.worktrees/b")
        assert seeded.generation == before + 2

    def test_stale_replace_refused(self, seeded, make_worktree):
        """Test replace with an outdated generation is discarded."""
        snapshot, generation = seeded.snapshot_with_generation()
        seeded.insert(make_worktree("/repo/.worktrees/b", "b"))

        assert seeded.replace(snapshot, expected_generation=generation) is False
        assert seeded.find_by_branch("b") is not None

    def test_current_replace_accepted(self, seeded):
        """Test replace with the current generation publishes."""
        snapshot, generation = seeded.snapshot_with_generation()
        assert seeded.replace(snapshot[:1], expected_generation=generation) is True
        assert len(seeded) == 1

    def test_snapshot_is_immutable(self, seeded, make_worktree):
        """Test a snapshot taken earlier does not change on writes."""
        snapshot = seeded.snapshot()
        seeded.insert(make_worktree("/repo/.worktrees/b", "b"))
        assert len(snapshot) == 2
        assert isinstance(snapshot, tuple)


class TestRegistryLookups:
    """Test lookups and single-entry writes."""

    def test_get_and_find(self, seeded):
        """Test lookup by path and by branch."""
        assert seeded.get("/repo/.worktrees/a").branch == "a"
        assert seeded.find_by_branch("a").path == "/repo/.worktrees/a"
        assert seeded.find_by_branch("missing") is None
        assert seeded.find_by_branch("") is None

    def test_main(self, seeded):
        """Test main() returns the main worktree."""
        assert seeded.main().branch == "main"
        assert WorktreeRegistry().main() is None

    def test_remove_unknown_returns_none(self, seeded):
        """Test removing an unknown path is a no-op."""
        assert seeded.remove("/nowhere") is None
        assert len(seeded) == 2

    def test_remove_main_rejected(self, seeded):
        """Test the main worktree cannot be removed."""
        with pytest.raises(ValueError):
            seeded.remove("/repo")

    def test_update_branch(self, seeded):
        """Test recording a branch switch."""
        updated = seeded.update_branch("/repo/.worktrees/a", "c")
        assert updated.branch == "c"
        assert seeded.find_by_branch("a") is None
        assert seeded.find_by_branch("c").path == "/repo/.worktrees/a"

    def test_update_unknown_raises(self, seeded, make_worktree):
        """Test update requires an existing entry."""
        with pytest.raises(KeyError):
            seeded.update(make_worktree("/nowhere", "x"))
        assert seeded.update_branch("/nowhere", "x") is None

    def test_insert_same_worktree_replaces_entry(self, seeded, make_worktree):
        """Test inserting an entry that is already registered updates it in place."""
        generation = seeded.generation
        seeded.insert(make_worktree("/repo/.worktrees/a", "a", has_changes=True, changed_files_count=2))
        assert len(seeded) == 2
        assert seeded.get("/repo/.worktrees/a").changed_files_count == 2
        assert seeded.generation == generation + 1

    def test_update_branch_publishes_once(self, seeded):
        """Test a branch switch is a single publish."""
        generation = seeded.generation
        seeded.update_branch("/repo/.worktrees/a", "c")
        assert seeded.generation == generation + 1

    def test_discard_matching_entries(self, seeded, make_worktree):
        """Test discard drops only entries whose path and branch still match."""
        seeded.insert(make_worktree("/repo/.worktrees/b", "b"))
        dropped = seeded.discard([
            make_worktree("/repo/.worktrees/a", "a"),
            make_worktree("/repo/.worktrees/b", "other"),
            make_worktree("/repo", "main", is_main=True),
        ])
        assert [wt.branch for wt in dropped] == ["a"]
        assert [wt.branch for wt in seeded.snapshot()] == ["main", "b"]

    def test_discard_nothing_keeps_generation(self, seeded, make_worktree):
        """Test discarding entries that are gone already publishes nothing."""
        generation = seeded.generation
        assert seeded.discard([make_worktree("/repo/.worktrees/gone", "gone")]) == []
        assert seeded.generation == generation
