"""Tests for EventBus"""
from worktree_orchestrator.services.event_service import EventBus


class TestEventBus:
    """Test event fan-out."""

    def test_emit_reaches_subscribers(self):
        """Test every listener receives the event."""
        bus = EventBus()
        first, second = [], []
        bus.subscribe(first.append)
        bus.subscribe(second.append)

        event = bus.emit("worktree:init-output", content="hello")
        assert first == [event]
        assert second == [event]
        assert event.to_dict()["payload"] == {"content": "hello"}

    def test_unsubscribe(self):
        """Test an unsubscribed listener receives nothing."""
        bus = EventBus()
        received = []
        unsubscribe = bus.subscribe(received.append)
        unsubscribe()
        unsubscribe()
        bus.emit("x")
        assert received == []

    def test_failing_listener_does_not_block_others(self):
        """Test delivery continues after a listener raises."""
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("listener bug")

        bus.subscribe(broken)
        bus.subscribe(received.append)
        bus.emit("x")
        assert len(received) == 1
