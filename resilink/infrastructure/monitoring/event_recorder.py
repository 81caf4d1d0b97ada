"""Keeps a bounded history of resilience events for health reporting."""

import collections
import logging
from threading import Lock
from typing import Any, Deque, Dict, List

from resilink.domain.events.resilience_events import DomainEvent

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 50

class EventRecorder:
    """Event handler that logs every event and remembers the most recent ones.

    Instances are callable, so one can be passed directly as the
    ``event_handler`` of any resilience component.
    """

    def __init__(self, max_events: int = DEFAULT_HISTORY_SIZE):
        self._events: Deque[DomainEvent] = collections.deque(maxlen=max_events)
        self._lock = Lock()

    def __call__(self, event: DomainEvent) -> None:
        logger.debug(f"EVENT: {event}")
        with self._lock:
            self._events.append(event)

    def recent(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Returns up to ``limit`` most recent events as dicts, oldest first."""
        with self._lock:
            events = list(self._events)[-limit:] if limit > 0 else []
        return [event.to_dict() for event in events]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
