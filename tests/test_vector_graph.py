"""Vector and graph helper tests."""

from __future__ import annotations

from collections.abc import Iterable

import numpy as np

from memory.stores.graph_store import GraphStore
from memory.stores.vector_store import VectorIndex, cosine_distances, from_blob, l2_normalize, to_blob


def edges_from(pairs: list[tuple[str, str, str]]):
    def fetch(sources: Iterable[str]) -> list[tuple[str, str, str]]:
        wanted = set(sources)
        return [edge for edge in pairs if edge[0] in wanted]

    return fetch


def test_traversal_handles_cycles_and_depth() -> None:
    graph = GraphStore(
        edges_from([("a", "b", "leads_to"), ("b", "a", "supports"), ("b", "c", "supports"), ("c", "d", "supports")])
    )

    assert graph.traverse("a", depth=1) == [("b", "leads_to", 1)]
    assert graph.traverse("a", depth=2) == [("b", "leads_to", 1), ("c", "supports", 2)]
    assert graph.traverse("a", depth=0) == []


def test_traversal_reports_each_relationship_once() -> None:
    graph = GraphStore(edges_from([("a", "b", "supports"), ("a", "b", "supersedes"), ("a", "c", "leads_to"), ("c", "b", "supports")]))

    assert graph.traverse("a", depth=2) == [("b", "supports", 1), ("b", "supersedes", 1), ("c", "leads_to", 1)]


def test_blob_round_trip_keeps_float32() -> None:
    vec = np.array([0.25, -1.5, 3.0], dtype=np.float32)
    restored = from_blob(to_blob(vec))
    assert restored.dtype == np.float32
    assert np.array_equal(restored, vec)


def test_zero_vector_normalizes_to_zero() -> None:
    assert not l2_normalize(np.zeros(4, dtype=np.float32)).any()


def test_nearest_orders_by_cosine_distance() -> None:
    index = VectorIndex(dim=3)
    index.add("x", np.array([1.0, 0.0, 0.0], dtype=np.float32))
    index.add("y", np.array([0.0, 1.0, 0.0], dtype=np.float32))
    index.add("xy", np.array([1.0, 1.0, 0.0], dtype=np.float32))

    hits = index.nearest(np.array([1.0, 0.1, 0.0], dtype=np.float32), k=2)

    assert [item for item, _ in hits] == ["x", "xy"]
    assert hits[0][1] < hits[1][1]
    assert len(index) == 3


def test_cosine_distances_shape() -> None:
    matrix = np.eye(3, dtype=np.float32)
    distances = cosine_distances(np.array([1.0, 0.0, 0.0], dtype=np.float32), matrix)
    assert np.allclose(distances, [0.0, 1.0, 1.0])
