"""Out-of-band event stream for init scripts, dev servers and reconciliation."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable, Dict, List

from worktree_orchestrator.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Event:
    """A single published event."""
    type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {"type": self.type, "payload": dict(self.payload), "timestamp": self.timestamp.isoformat()}


EventListener = Callable[[Event], None]


class EventBus:
    """Fan-out of events to subscribed listeners.

    Listeners run synchronously on the publishing thread. A failing listener
    is logged and does not stop delivery to the others.
    """

    def __init__(self):
        self._listeners: List[EventListener] = []
        self._lock = Lock()

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Register a listener; returns a function that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event_type: str, **payload: Any) -> Event:
        """Publish an event to every listener."""
        event = Event(event_type, payload)
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Event listener failed for {event_type}: {e}")
        return event
