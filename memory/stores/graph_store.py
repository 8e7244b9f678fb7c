"""Graph traversal over memory relationship edges."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterable

RELATIONSHIPS = ("leads_to", "contradicts", "supports", "supersedes")

EdgeFetcher = Callable[[Iterable[str]], list[tuple[str, str, str]]]


class GraphStore:
    """Bounded breadth-first traversal over directed relationship edges."""

    def __init__(self, fetch_outgoing: EdgeFetcher) -> None:
        self._fetch_outgoing = fetch_outgoing

    def traverse(self, start_id: str, depth: int = 2) -> list[tuple[str, str, int]]:
        """Return (memory_id, relationship, distance) reachable within depth hops.

        Each target keeps the distance of its first (shortest) discovery; a
        target reached through several relationships at that distance is
        reported once per relationship.
        """
        if depth < 1:
            return []
        seen: dict[str, int] = {start_id: 0}
        found: list[tuple[str, str, int]] = []
        emitted: set[tuple[str, str]] = set()
        frontier: deque[str] = deque([start_id])
        distance = 0
        while frontier and distance < depth:
            distance += 1
            current = list(frontier)
            frontier.clear()
            for source, target, relationship in self._fetch_outgoing(current):
                if target == start_id:
                    continue
                known = seen.get(target)
                if known is not None and known < distance:
                    continue
                if known is None:
                    seen[target] = distance
                    frontier.append(target)
                if (target, relationship) not in emitted:
                    emitted.add((target, relationship))
                    found.append((target, relationship, distance))
        return found
