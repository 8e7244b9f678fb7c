"""Delta indexing of agent transcripts into the short-term index."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path

from indexing.admission import IndexAdmission
from indexing.cache import FileSizeCache, TranscriptCatalog
from indexing.conversation_index import ConversationIndex
from indexing.discovery import ConversationDiscovery
from indexing.ingest import MessageIngestor
from indexing.transcripts import count_lines
from llm.embeddings import BaseEmbedder
from memory.stores.sql_store import SchemaNotInitialized, SQLStore
from memory.types.indexing import (
    AgentProfile,
    ConversationIndexEntry,
    DeltaFileResult,
    DeltaReportItem,
    IndexDeltaResult,
    PendingConversation,
)

logger = logging.getLogger("ame.index")

SCHEMA_PENDING_MESSAGE = "Schema not initialized yet - will retry on next cycle"
NO_PROJECTS_MESSAGE = "No projects found for this agent"


class DeltaIndexer:
    """Indexes only the transcript lines added since the previous run."""

    def __init__(
        self,
        sql_store: SQLStore,
        embedder: BaseEmbedder,
        admission: IndexAdmission,
        size_cache: FileSizeCache,
        catalog: TranscriptCatalog,
    ) -> None:
        self.index = ConversationIndex(sql_store)
        self.discovery = ConversationDiscovery(self.index, catalog, size_cache)
        self.ingestor = MessageIngestor(sql_store, embedder)
        self.admission = admission
        self.size_cache = size_cache

    def select_pending(self, entries: list[ConversationIndexEntry]) -> list[PendingConversation]:
        """Entries whose transcript grew past the indexed watermark."""
        pending: list[PendingConversation] = []
        for entry in entries:
            path = Path(entry.jsonl_file)
            try:
                size = path.stat().st_size
            except OSError:
                logger.debug("Transcript vanished: %s", entry.jsonl_file)
                continue
            if entry.last_indexed_message_count > 0 and self.size_cache.unchanged(entry.jsonl_file, size):
                continue
            try:
                current = count_lines(path)
            except OSError:
                continue
            candidate = PendingConversation(entry=entry, current_line_count=current, size=size)
            if candidate.delta > 0:
                pending.append(candidate)
        return pending

    def run(self, profile: AgentProfile, dry_run: bool = False, batch_size: int = 10) -> IndexDeltaResult:
        """Discover, select and ingest; never raises."""
        agent_id = profile.agent_id
        try:
            with self.admission.slot(agent_id):
                logger.info("Delta indexing agent %s (dry_run=%s)", agent_id[:8], dry_run)
                return self._run(profile, dry_run, max(1, batch_size))
        except SchemaNotInitialized:
            logger.info("Schema not initialized for agent %s, skipping", agent_id[:8])
            return IndexDeltaResult(success=True, agent_id=agent_id, message=SCHEMA_PENDING_MESSAGE, dry_run=dry_run)
        except Exception as exc:
            logger.exception("Delta indexing failed for agent %s", agent_id[:8])
            return IndexDeltaResult(success=False, agent_id=agent_id, dry_run=dry_run, error=str(exc))

    def _run(self, profile: AgentProfile, dry_run: bool, batch_size: int) -> IndexDeltaResult:
        agent_id = profile.agent_id
        projects = self.discovery.resolve_projects(profile, dry_run=dry_run)
        if not projects:
            return IndexDeltaResult(success=True, agent_id=agent_id, message=NO_PROJECTS_MESSAGE, dry_run=dry_run)

        errors: list[str] = []
        new_entries = self.discovery.discover(projects, dry_run=dry_run, errors=errors)
        if new_entries:
            logger.info("Discovered %d new conversation(s)", len(new_entries))

        entries: dict[str, ConversationIndexEntry] = {}
        for project_path, _name, _dir in projects:
            for entry in self.index.get_conversations(project_path):
                entries[entry.jsonl_file] = entry
        for entry in new_entries:
            entries.setdefault(entry.jsonl_file, entry)

        pending = self.select_pending(list(entries.values()))
        logger.info("%d of %d conversations need indexing", len(pending), len(entries))

        if dry_run:
            report = [
                DeltaReportItem(
                    file=item.entry.jsonl_file,
                    last_indexed=item.entry.last_indexed_message_count,
                    current_messages=item.current_line_count,
                    delta_to_index=item.delta,
                )
                for item in pending
            ]
            return IndexDeltaResult(
                success=True,
                agent_id=agent_id,
                dry_run=True,
                new_conversations_discovered=len(new_entries),
                conversations_needing_index=len(pending),
                report=report,
                errors=errors,
            )

        results: list[DeltaFileResult] = []
        total_processed = 0
        total_duration = 0
        for item in pending:
            file = item.entry.jsonl_file
            try:
                stats = self.ingestor.ingest_delta(
                    file,
                    item.entry.last_indexed_message_count,
                    batch_size,
                    end_line=item.current_line_count,
                )
                self.index.mark_indexed(
                    file,
                    item.current_line_count,
                    indexed_at=datetime.now(UTC),
                    last_message_at=stats.last_message_at,
                )
            except SchemaNotInitialized:
                raise
            except Exception as exc:
                logger.error("Failed to index %s: %s", file, exc)
                errors.append(f"{file}: {exc}")
                continue
            # Size from the same stat as the line count, so later appends still register.
            self.size_cache.set(file, item.size)
            results.append(
                DeltaFileResult(
                    file=file,
                    delta=item.delta,
                    processed=stats.processed,
                    duration_ms=stats.duration_ms,
                )
            )
            total_processed += stats.processed
            total_duration += stats.duration_ms

        logger.info("Delta indexing complete: %d messages in %dms", total_processed, total_duration)
        return IndexDeltaResult(
            success=True,
            agent_id=agent_id,
            new_conversations_discovered=len(new_entries),
            conversations_indexed=len(results),
            total_messages_processed=total_processed,
            total_duration_ms=total_duration,
            results=results,
            errors=errors,
        )
