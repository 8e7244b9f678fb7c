"""Background scheduling of indexing and consolidation."""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from core.memory_service import MemoryService

logger = logging.getLogger("ame.scheduler")


class Subsystem(ABC):
    """Long-running component with an explicit lifecycle."""

    name: str

    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...

    @abstractmethod
    def status(self) -> dict[str, Any]: ...


class MemoryScheduler:
    """Timer loop that indexes every agent often and consolidates less often.

    One thread handles all agents sequentially; indexing is additionally
    throttled by the shared admission gate.
    """

    def __init__(
        self,
        service: MemoryService,
        agents: Callable[[], list[str]],
        index_interval: float = 300.0,
        consolidation_interval: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.service = service
        self.agents = agents
        self.index_interval = index_interval
        self.consolidation_interval = consolidation_interval
        self._clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._next_consolidation = 0.0
        self.index_runs = 0
        self.consolidation_runs = 0
        self.last_index: dict[str, Any] = {}
        self.last_consolidation: dict[str, Any] = {}

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._next_consolidation = self._clock() + self.consolidation_interval
        self._thread = threading.Thread(target=self._loop, name="memory-scheduler", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 10.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.is_set():
            self.tick()
            self._stop.wait(self.index_interval)

    def tick(self) -> None:
        """One scheduling pass: index all agents, then consolidate if due."""
        consolidate = self._clock() >= self._next_consolidation
        for agent_id in self.agents():
            if self._stop.is_set():
                return
            self.run_index(agent_id)
            if consolidate:
                self.run_consolidation(agent_id)
        if consolidate:
            self._next_consolidation = self._clock() + self.consolidation_interval

    def run_index(self, agent_id: str) -> None:
        result = self.service.run_index_delta(agent_id)
        self.index_runs += 1
        self.last_index[agent_id] = result.model_dump(mode="json")
        if not result.success:
            logger.warning("Scheduled indexing failed for %s: %s", agent_id[:8], result.error)

    def run_consolidation(self, agent_id: str) -> None:
        result = self.service.consolidate(agent_id)
        promotion = self.service.promote(agent_id)
        pruning = self.service.prune(agent_id)
        self.consolidation_runs += 1
        self.last_consolidation[agent_id] = {
            "consolidation": result.model_dump(mode="json"),
            "promotion": promotion.model_dump(mode="json"),
            "prune": pruning.model_dump(mode="json"),
        }


class MemorySubsystem(Subsystem):
    """Exposes the memory scheduler through the subsystem lifecycle."""

    name = "memory"

    def __init__(self, scheduler: MemoryScheduler) -> None:
        self.scheduler = scheduler
        self.started_at: datetime | None = None

    @classmethod
    def from_service(cls, service: MemoryService) -> MemorySubsystem:
        sched = service.runtime.settings.scheduler
        return cls(
            MemoryScheduler(
                service,
                agents=service.runtime.agent_ids,
                index_interval=sched.index_interval_seconds,
                consolidation_interval=sched.consolidation_interval_seconds,
            )
        )

    def start(self) -> None:
        if self.scheduler.running:
            return
        self.scheduler.start()
        self.started_at = datetime.now(UTC)
        logger.info("Memory subsystem started")

    def stop(self) -> None:
        self.scheduler.stop()
        logger.info("Memory subsystem stopped")

    def status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "running": self.scheduler.running,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "index_runs": self.scheduler.index_runs,
            "consolidation_runs": self.scheduler.consolidation_runs,
            "last_index": self.scheduler.last_index,
            "last_consolidation": self.scheduler.last_consolidation,
        }
