"""In-process notifications for completed memory engine runs."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger("ame.events")

INDEX_DELTA_COMPLETED = "index_delta.completed"
CONSOLIDATION_COMPLETED = "consolidation.completed"
PROMOTION_COMPLETED = "tiers.promoted"
PRUNE_COMPLETED = "tiers.pruned"
ANY_EVENT = "*"

RunListener = Callable[[dict[str, Any]], None]


class EventBus:
    """Fans run summaries out to listeners.

    Listeners registered under ``ANY_EVENT`` see every payload with the
    event name added under ``"event"``.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[RunListener]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event_name: str, listener: RunListener) -> None:
        with self._lock:
            self._listeners[event_name].append(listener)

    def unsubscribe(self, event_name: str, listener: RunListener) -> None:
        with self._lock:
            registered = self._listeners.get(event_name, [])
            if listener in registered:
                registered.remove(listener)

    def emit(self, event_name: str, payload: dict[str, Any]) -> None:
        """Deliver a payload; a failing listener is logged and skipped."""
        with self._lock:
            targets = [(listener, payload) for listener in self._listeners.get(event_name, [])]
            tagged = {"event": event_name, **payload}
            targets += [(listener, tagged) for listener in self._listeners.get(ANY_EVENT, [])]
        for listener, body in targets:
            try:
                listener(body)
            except Exception:
                logger.exception("Listener for %s failed", event_name)
