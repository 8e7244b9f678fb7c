"""Vector helpers for float32 embeddings stored as blobs."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

DEFAULT_DIM = 384


def l2_normalize(vec: np.ndarray) -> np.ndarray:
    """Return unit-length copy; zero vectors are returned unchanged."""
    arr = np.asarray(vec, dtype=np.float32)
    norm = float(np.linalg.norm(arr))
    if norm == 0.0:
        return arr
    return arr / norm


def to_blob(vec: Sequence[float] | np.ndarray) -> bytes:
    """Serialize a vector to little-endian float32 bytes."""
    return np.asarray(vec, dtype="<f4").tobytes()


def from_blob(blob: bytes) -> np.ndarray:
    """Deserialize float32 bytes back into a vector."""
    return np.frombuffer(blob, dtype="<f4").astype(np.float32)


def cosine_distances(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine distance (1 - similarity) of query against each row of matrix, in float64."""
    if matrix.size == 0:
        return np.zeros(0, dtype=np.float64)
    q = np.asarray(query, dtype=np.float64)
    q_norm = float(np.linalg.norm(q))
    if q_norm:
        q = q / q_norm
    rows = np.asarray(matrix, dtype=np.float64)
    norms = np.linalg.norm(rows, axis=1)
    norms[norms == 0.0] = 1.0
    return 1.0 - (rows @ q) / norms


class VectorIndex:
    """Exact nearest-neighbour ranking over a small in-memory matrix."""

    def __init__(self, dim: int = DEFAULT_DIM) -> None:
        self.dim = dim
        self._ids: list[str] = []
        self._rows: list[np.ndarray] = []

    def add(self, item_id: str, vec: np.ndarray) -> None:
        arr = np.asarray(vec, dtype=np.float32)
        if arr.shape != (self.dim,):
            raise ValueError(f"Expected vector of dimension {self.dim}, got {arr.shape}")
        self._ids.append(item_id)
        self._rows.append(arr)

    def __len__(self) -> int:
        return len(self._ids)

    def nearest(self, query: np.ndarray, k: int) -> list[tuple[str, float]]:
        """Return (id, distance) pairs ordered by ascending distance."""
        if not self._ids or k <= 0:
            return []
        distances = cosine_distances(np.asarray(query, dtype=np.float32), np.vstack(self._rows))
        order = np.argsort(distances, kind="stable")[:k]
        return [(self._ids[i], float(distances[i])) for i in order]
