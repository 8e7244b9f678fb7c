"""Process-wide caches shared by delta indexing runs."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from indexing.transcripts import read_header

logger = logging.getLogger("ame.index")

CATALOG_TTL_SECONDS = 600.0


class FileSizeCache:
    """Last observed byte size per transcript file."""

    def __init__(self) -> None:
        self._store: dict[str, int] = {}
        self._lock = threading.Lock()

    def get(self, path: str) -> int | None:
        with self._lock:
            return self._store.get(path)

    def set(self, path: str, size: int) -> None:
        with self._lock:
            self._store[path] = size

    def unchanged(self, path: str, size: int) -> bool:
        """True when the cached size equals ``size``. Never mutates the cache."""
        cached = self.get(path)
        return cached is not None and cached == size

    def refresh(self, path: str) -> None:
        """Record the file's current size; vanished files are forgotten."""
        try:
            size = Path(path).stat().st_size
        except OSError:
            with self._lock:
                self._store.pop(path, None)
            return
        self.set(path, size)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()


@dataclass(frozen=True)
class CatalogEntry:
    path: str
    session_id: str | None
    cwd: str | None


class TranscriptCatalog:
    """TTL-cached listing of every transcript under the projects root."""

    def __init__(
        self,
        root: Path,
        ttl_seconds: float = CATALOG_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.root = root
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._files: list[CatalogEntry] | None = None
        self._built_at = 0.0

    def files(self) -> list[CatalogEntry]:
        with self._lock:
            now = self._clock()
            if self._files is not None and now - self._built_at < self.ttl_seconds:
                return self._files
            self._files = self._scan()
            self._built_at = now
            logger.info(
                "Transcript catalog rebuilt: %d files (ttl %.0fs)", len(self._files), self.ttl_seconds
            )
            return self._files

    def invalidate(self) -> None:
        with self._lock:
            self._files = None

    def _scan(self) -> list[CatalogEntry]:
        if not self.root.is_dir():
            return []
        entries: list[CatalogEntry] = []
        for path in sorted(self.root.rglob("*.jsonl")):
            try:
                header = read_header(path)
            except (OSError, ValueError) as exc:
                logger.warning("Skipping unreadable transcript %s: %s", path, exc)
                continue
            entries.append(CatalogEntry(path=str(path), session_id=header.session_id, cwd=header.cwd))
        return entries
