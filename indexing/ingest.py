"""Writes transcript deltas into the short-term message index."""

from __future__ import annotations

import hashlib
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime
from itertools import islice
from pathlib import Path

from llm.embeddings import BaseEmbedder
from memory.schemas import CodeSymbolRecord, MessageRecord, MessageTermRecord, MessageVectorRecord
from memory.stores.sql_store import SQLStore
from memory.stores.vector_store import to_blob
from indexing.transcripts import iter_lines, parse_line, to_message

logger = logging.getLogger("ame.index")

_TERM_RE = re.compile(r"[a-z][a-z0-9_]{2,}")
_SYMBOL_RE = re.compile(
    r"\b(?:[a-z]+(?:[A-Z][a-z0-9]*)+|[A-Z][a-z0-9]+(?:[A-Z][a-z0-9]*)+|[a-z0-9]+(?:_[a-z0-9]+)+|[A-Za-z_]\w*(?=\())"
)
_STOPWORDS = frozenset(
    "the and for are but not you all any can had her was one our out has him his how its may new now "
    "see two way who did get let put say she too use that with have this will your from they know want "
    "been good much some time very when come here just like long make many more only over such take "
    "than them well were what there their would about could other which these should".split()
)
MAX_TERMS = 64
MAX_SYMBOLS = 32


@dataclass
class IngestStats:
    processed: int = 0
    duration_ms: int = 0
    last_message_at: datetime | None = None


@dataclass
class _Pending:
    msg_id: str
    line_no: int
    role: str
    ts: datetime | None
    text: str


def message_id(conversation_file: str, line_no: int) -> str:
    """Stable id for the message on ``line_no`` of a transcript."""
    return hashlib.sha256(f"{conversation_file}:{line_no}".encode("utf-8")).hexdigest()[:32]


def extract_terms(text: str) -> list[str]:
    seen: dict[str, None] = {}
    for term in _TERM_RE.findall(text.lower()):
        if term not in _STOPWORDS and len(term) <= 128:
            seen.setdefault(term, None)
            if len(seen) >= MAX_TERMS:
                break
    return list(seen)


def extract_symbols(text: str) -> list[str]:
    seen: dict[str, None] = {}
    for symbol in _SYMBOL_RE.findall(text):
        if len(symbol) <= 256:
            seen.setdefault(symbol, None)
            if len(seen) >= MAX_SYMBOLS:
                break
    return list(seen)


class MessageIngestor:
    """Embeds and upserts transcript messages in batches."""

    def __init__(self, sql_store: SQLStore, embedder: BaseEmbedder) -> None:
        self.sql_store = sql_store
        self.embedder = embedder

    def ingest_delta(
        self,
        conversation_file: str,
        start_line: int,
        batch_size: int = 10,
        end_line: int | None = None,
    ) -> IngestStats:
        """Index non-empty lines in ``[start_line, end_line)`` (0-based; ``None`` reads to EOF).

        Message ids are derived from file and line, so re-running over the
        same lines overwrites rows instead of duplicating them.
        """
        started = time.monotonic()
        stats = IngestStats()
        batch: list[_Pending] = []
        lines = islice(enumerate(iter_lines(Path(conversation_file))), start_line, end_line)
        for line_no, line in lines:
            record = parse_line(line)
            if record is None:
                continue
            message = to_message(record)
            if message is None or not message.content.strip():
                continue
            batch.append(
                _Pending(
                    msg_id=message_id(conversation_file, line_no),
                    line_no=line_no,
                    role=message.role,
                    ts=message.timestamp,
                    text=message.content,
                )
            )
            if message.timestamp and (stats.last_message_at is None or message.timestamp > stats.last_message_at):
                stats.last_message_at = message.timestamp
            if len(batch) >= batch_size:
                stats.processed += self._write_batch(conversation_file, batch)
                batch = []
        if batch:
            stats.processed += self._write_batch(conversation_file, batch)
        stats.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Indexed %d messages from %s in %dms", stats.processed, conversation_file, stats.duration_ms
        )
        return stats

    def _write_batch(self, conversation_file: str, batch: list[_Pending]) -> int:
        vectors = self.embedder.embed([item.text for item in batch])
        with self.sql_store.session() as sess:
            for item, vec in zip(batch, vectors):
                sess.merge(
                    MessageRecord(
                        msg_id=item.msg_id,
                        conversation_file=conversation_file,
                        line_no=item.line_no,
                        role=item.role,
                        ts=item.ts,
                        text=item.text,
                    )
                )
                sess.merge(MessageVectorRecord(msg_id=item.msg_id, vec=to_blob(vec)))
                for term in extract_terms(item.text):
                    sess.merge(MessageTermRecord(msg_id=item.msg_id, term=term))
                for symbol in extract_symbols(item.text):
                    sess.merge(CodeSymbolRecord(msg_id=item.msg_id, symbol=symbol))
        return len(batch)
