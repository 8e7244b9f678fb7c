"""Tier maintenance: warm-to-long promotion and short-term pruning."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from memory.memory_store import MemoryStore
from memory.schemas import (
    CodeSymbolRecord,
    ConsolidatedConversationRecord,
    MemoryRecord,
    MessageRecord,
    MessageTermRecord,
    MessageVectorRecord,
)
from memory.stores.sql_store import StoreError
from memory.types.runs import PromotionResult, PruneResult

logger = logging.getLogger("ame.consolidate")


class TierMaintenance:
    """Promotes reinforced memories and reclaims consolidated raw messages."""

    def __init__(self, store: MemoryStore) -> None:
        self.store = store
        self.sql_store = store.sql_store

    def promote(
        self,
        agent_id: str,
        min_reinforcements: int = 3,
        min_age_days: float = 7,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> PromotionResult:
        """Move warm memories that were reinforced enough and are old enough to the long tier."""
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(days=min_age_days)
        with self.sql_store.session() as sess:
            eligible_ids = list(
                sess.scalars(
                    select(MemoryRecord.memory_id).where(
                        MemoryRecord.agent_id == agent_id,
                        MemoryRecord.tier == "warm",
                        MemoryRecord.reinforcement_count >= min_reinforcements,
                        MemoryRecord.created_at <= cutoff,
                    )
                ).all()
            )
        if dry_run:
            return PromotionResult(eligible=len(eligible_ids), promoted=len(eligible_ids), dry_run=True)

        promoted = 0
        for memory_id in eligible_ids:
            try:
                if self.store.promote_memory(memory_id, now=now):
                    promoted += 1
                    logger.info("Promoted to long-term: %s", memory_id)
            except StoreError as exc:
                logger.error("Failed to promote %s: %s", memory_id, exc)
        return PromotionResult(eligible=len(eligible_ids), promoted=promoted)

    def prune(
        self,
        agent_id: str,
        retention_days: float = 0,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> PruneResult:
        """Delete consolidated short-term messages older than the retention window.

        ``retention_days == 0`` disables pruning. Messages of transcripts that
        were never consolidated are kept regardless of age.
        """
        if retention_days <= 0:
            logger.info("Pruning disabled (retention_days=%s)", retention_days)
            return PruneResult(disabled=True, dry_run=dry_run)

        cutoff = (now or datetime.now(UTC)) - timedelta(days=retention_days)
        consolidated = select(ConsolidatedConversationRecord.conversation_file).where(
            ConsolidatedConversationRecord.agent_id == agent_id
        )
        with self.sql_store.session() as sess:
            doomed = list(
                sess.scalars(
                    select(MessageRecord.msg_id).where(
                        MessageRecord.ts.is_not(None),
                        MessageRecord.ts < cutoff,
                        MessageRecord.conversation_file.in_(consolidated),
                    )
                ).all()
            )
        if dry_run or not doomed:
            return PruneResult(pruned=len(doomed), dry_run=dry_run)

        pruned = 0
        for start in range(0, len(doomed), 500):
            chunk = doomed[start : start + 500]
            try:
                with self.sql_store.session() as sess:
                    sess.execute(delete(MessageRecord).where(MessageRecord.msg_id.in_(chunk)))
                    sess.execute(delete(MessageVectorRecord).where(MessageVectorRecord.msg_id.in_(chunk)))
                pruned += len(chunk)
            except StoreError as exc:
                logger.error("Failed to delete %d messages: %s", len(chunk), exc)
        logger.info("Pruned %d old messages for %s", pruned, agent_id[:8])
        return PruneResult(pruned=pruned, orphans_removed=self._remove_orphans())

    def _remove_orphans(self) -> int:
        """Best-effort cleanup of term/symbol rows whose message is gone."""
        removed = 0
        live = select(MessageRecord.msg_id)
        for table in (MessageTermRecord, CodeSymbolRecord):
            try:
                with self.sql_store.session() as sess:
                    result = sess.execute(delete(table).where(table.msg_id.not_in(live)))
                    count = result.rowcount or 0
                removed += count
                if count:
                    logger.info("Deleted %d orphaned %s rows", count, table.__tablename__)
            except (StoreError, SQLAlchemyError) as exc:
                logger.warning("Non-fatal: orphan cleanup of %s failed: %s", table.__tablename__, exc)
        return removed
