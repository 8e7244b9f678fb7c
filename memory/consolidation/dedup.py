"""Embedding-similarity deduplication of candidate memories."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import numpy as np

from memory.memory_store import MemoryStore

# Cosine distance below which a candidate counts as an existing memory (similarity > 0.85).
DUPLICATE_DISTANCE = 0.15
# float32 storage puts a similarity of exactly 0.85 a few ulps under the threshold.
BOUNDARY_TOLERANCE = 1e-6
NEIGHBOURS = 5
MIN_NEIGHBOUR_CONFIDENCE = 0.5


@dataclass(frozen=True)
class DedupDecision:
    action: Literal["create", "reinforce"]
    existing_memory_id: str | None = None
    distance: float | None = None

    @property
    def similarity(self) -> float | None:
        return None if self.distance is None else 1.0 - self.distance


def check_duplicate(
    store: MemoryStore,
    agent_id: str,
    category: str,
    embedding: np.ndarray,
    threshold: float = DUPLICATE_DISTANCE,
) -> DedupDecision:
    """Decide whether a candidate reinforces an existing memory or becomes a new one."""
    neighbours = store.search_by_embedding(
        agent_id,
        embedding,
        limit=NEIGHBOURS,
        categories=[category],
        min_confidence=MIN_NEIGHBOUR_CONFIDENCE,
    )
    if neighbours and neighbours[0].distance < threshold - BOUNDARY_TOLERANCE:
        nearest = neighbours[0]
        return DedupDecision(action="reinforce", existing_memory_id=nearest.memory_id, distance=nearest.distance)
    return DedupDecision(action="create", distance=neighbours[0].distance if neighbours else None)
