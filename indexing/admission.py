"""FIFO admission control for delta indexing runs."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger("ame.index")


class IndexAdmission:
    """Counting semaphore that admits waiters strictly in arrival order.

    A released slot is handed directly to the oldest waiter, so a late
    arrival can never overtake the queue.
    """

    def __init__(self, max_concurrent: int = 1) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self._lock = threading.Lock()
        self._active = 0
        self._waiters: deque[threading.Event] = deque()

    @property
    def active(self) -> int:
        return self._active

    @property
    def waiting(self) -> int:
        return len(self._waiters)

    def acquire(self, agent_id: str = "") -> None:
        with self._lock:
            if self._active < self.max_concurrent and not self._waiters:
                self._active += 1
                logger.debug("Admission granted to %s (%d/%d active)", agent_id[:8], self._active, self.max_concurrent)
                return
            ticket = threading.Event()
            self._waiters.append(ticket)
            logger.info("Indexing for %s queued (%d waiting)", agent_id[:8], len(self._waiters))
        queued_at = time.monotonic()
        ticket.wait()
        logger.debug("Admission granted to %s after %.0fms", agent_id[:8], (time.monotonic() - queued_at) * 1000)

    def release(self, agent_id: str = "") -> None:
        with self._lock:
            if self._waiters:
                # Slot passes straight to the next waiter; active count is unchanged.
                self._waiters.popleft().set()
                return
            if self._active == 0:
                raise RuntimeError("release() called without a held slot")
            self._active -= 1
            logger.debug("Admission released by %s (%d/%d active)", agent_id[:8], self._active, self.max_concurrent)

    @contextmanager
    def slot(self, agent_id: str = "") -> Iterator[None]:
        self.acquire(agent_id)
        try:
            yield
        finally:
            self.release(agent_id)
