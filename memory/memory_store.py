"""Long-term memory store over SQL, vector and graph relations."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime

import numpy as np
from sqlalchemy import delete, func, or_, select, update

from memory.schemas import (
    ConsolidatedConversationRecord,
    ConsolidationRunRecord,
    MemoryLinkRecord,
    MemoryRecord,
    MemoryVectorRecord,
    as_utc,
)
from memory.stores.graph_store import RELATIONSHIPS, GraphStore
from memory.stores.sql_store import SQLStore, StoreError
from memory.stores.vector_store import DEFAULT_DIM, VectorIndex, from_blob, l2_normalize, to_blob
from memory.types.memory import (
    CATEGORIES,
    Memory,
    MemoryMatch,
    MemoryStats,
    RelatedMemory,
    category_system,
)
from memory.types.runs import ConsolidationRun

logger = logging.getLogger("ame.store")

CONTEXT_DELIMITER = "\n---\n"


class MemoryNotFound(StoreError):
    """Referenced memory does not exist (or belongs to another agent)."""


def new_memory_id() -> str:
    return f"mem-{int(datetime.now(UTC).timestamp() * 1000)}-{uuid.uuid4().hex[:8]}"


def merge_context(current: str | None, additional: str | None) -> str | None:
    """Append new context unless it is empty or identical to the current one."""
    if not additional or additional == current:
        return current
    if not current:
        return additional
    return f"{current}{CONTEXT_DELIMITER}{additional}"


class MemoryStore:
    """Durable storage for memories, vectors, links and consolidation bookkeeping."""

    def __init__(self, sql_store: SQLStore, dim: int = DEFAULT_DIM) -> None:
        self.sql_store = sql_store
        self.dim = dim
        self.graph = GraphStore(fetch_outgoing=self._outgoing_edges)

    def initialize(self) -> None:
        """Create the schema; safe to call repeatedly."""
        self.sql_store.create_all()

    # -- memories -----------------------------------------------------------

    def create_memory(
        self,
        agent_id: str,
        category: str,
        content: str,
        confidence: float,
        context: str | None = None,
        source_conversations: Sequence[str] | None = None,
        memory_id: str | None = None,
    ) -> Memory:
        """Insert a warm-tier memory with system derived from its category."""
        if category not in CATEGORIES:
            raise ValueError(f"Unknown memory category: {category}")
        now = datetime.now(UTC)
        record = MemoryRecord(
            memory_id=memory_id or new_memory_id(),
            agent_id=agent_id,
            tier="warm",
            system=category_system(category),
            category=category,
            content=content,
            context=context,
            source_conversations=sorted(set(source_conversations or [])),
            confidence=max(0.0, min(1.0, confidence)),
            created_at=now,
            last_reinforced_at=now,
            reinforcement_count=1,
            access_count=0,
        )
        with self.sql_store.session() as sess:
            sess.add(record)
            sess.flush()
            return self._memory_to_model(record)

    def store_embedding(self, memory_id: str, embedding: Sequence[float] | np.ndarray) -> None:
        """Store (or replace) the L2-normalized vector for a memory."""
        vec = l2_normalize(np.asarray(embedding, dtype=np.float32))
        if vec.shape != (self.dim,):
            raise ValueError(f"Embedding dimension {vec.shape} does not match store dimension {self.dim}")
        with self.sql_store.session() as sess:
            sess.merge(MemoryVectorRecord(memory_id=memory_id, vec=to_blob(vec)))

    def get_embedding(self, memory_id: str) -> np.ndarray | None:
        with self.sql_store.session() as sess:
            row = sess.get(MemoryVectorRecord, memory_id)
            return from_blob(row.vec) if row else None

    def reinforce_memory(
        self,
        memory_id: str,
        additional_context: str | None = None,
        source_conversation: str | None = None,
    ) -> Memory:
        """Record another observation of an existing memory."""
        now = datetime.now(UTC)
        with self.sql_store.session() as sess:
            row = sess.get(MemoryRecord, memory_id)
            if row is None:
                raise MemoryNotFound(f"Memory {memory_id} not found")
            # Counter bump is a single UPDATE so concurrent writers cannot lose increments.
            sess.execute(
                update(MemoryRecord)
                .where(MemoryRecord.memory_id == memory_id)
                .values(
                    reinforcement_count=MemoryRecord.reinforcement_count + 1,
                    last_reinforced_at=now,
                )
            )
            sess.refresh(row)
            row.context = merge_context(row.context, additional_context)
            if source_conversation and source_conversation not in (row.source_conversations or []):
                row.source_conversations = sorted({*(row.source_conversations or []), source_conversation})
            sess.flush()
            return self._memory_to_model(row)

    def link_memories(self, from_memory_id: str, to_memory_id: str, relationship: str) -> bool:
        """Persist a directed edge; returns False for self-loops and duplicates."""
        if relationship not in RELATIONSHIPS:
            raise ValueError(f"Unknown relationship: {relationship}")
        if from_memory_id == to_memory_id:
            return False
        with self.sql_store.session() as sess:
            key = (from_memory_id, to_memory_id, relationship)
            if sess.get(MemoryLinkRecord, key) is not None:
                return False
            sess.add(
                MemoryLinkRecord(
                    from_memory_id=from_memory_id,
                    to_memory_id=to_memory_id,
                    relationship=relationship,
                    created_at=datetime.now(UTC),
                )
            )
        return True

    def update_memory(
        self,
        memory_id: str,
        agent_id: str,
        content: str | None = None,
        category: str | None = None,
        context: str | None = None,
    ) -> Memory:
        """Administrative edit of content, category or context; counters are kept."""
        if category is not None and category not in CATEGORIES:
            raise ValueError(f"Unknown memory category: {category}")
        with self.sql_store.session() as sess:
            row = sess.get(MemoryRecord, memory_id)
            if row is None or row.agent_id != agent_id:
                raise MemoryNotFound(f"Memory {memory_id} not found for agent {agent_id}")
            if content:
                row.content = content
            if category:
                row.category = category
                row.system = category_system(category)
            if context is not None:
                row.context = context or None
            sess.flush()
            return self._memory_to_model(row)

    def promote_memory(self, memory_id: str, now: datetime | None = None) -> bool:
        """Move a warm memory to the long tier. Long memories are left untouched."""
        with self.sql_store.session() as sess:
            result = sess.execute(
                update(MemoryRecord)
                .where(MemoryRecord.memory_id == memory_id, MemoryRecord.tier == "warm")
                .values(tier="long", promoted_at=now or datetime.now(UTC))
            )
            return bool(result.rowcount)

    def get_memory(self, memory_id: str) -> Memory | None:
        with self.sql_store.session() as sess:
            row = sess.get(MemoryRecord, memory_id)
            return self._memory_to_model(row) if row else None

    def list_memories(
        self,
        agent_id: str,
        tier: str | None = None,
        category: str | None = None,
    ) -> list[Memory]:
        with self.sql_store.session() as sess:
            query = select(MemoryRecord).where(MemoryRecord.agent_id == agent_id)
            if tier is not None:
                query = query.where(MemoryRecord.tier == tier)
            if category is not None:
                query = query.where(MemoryRecord.category == category)
            rows = sess.scalars(query.order_by(MemoryRecord.created_at.asc())).all()
            return [self._memory_to_model(row) for row in rows]

    def get_memories_by_category(self, agent_id: str, category: str, limit: int = 50) -> list[Memory]:
        """Most reinforced first, newest first among ties."""
        with self.sql_store.session() as sess:
            rows = sess.scalars(
                select(MemoryRecord)
                .where(MemoryRecord.agent_id == agent_id, MemoryRecord.category == category)
                .order_by(MemoryRecord.reinforcement_count.desc(), MemoryRecord.created_at.desc())
                .limit(limit)
            ).all()
            return [self._memory_to_model(row) for row in rows]

    def get_recent_memories(self, agent_id: str, limit: int = 20) -> list[Memory]:
        with self.sql_store.session() as sess:
            rows = sess.scalars(
                select(MemoryRecord)
                .where(MemoryRecord.agent_id == agent_id)
                .order_by(MemoryRecord.created_at.desc())
                .limit(limit)
            ).all()
            return [self._memory_to_model(row) for row in rows]

    def count_memories(self, agent_id: str) -> int:
        with self.sql_store.session() as sess:
            return int(
                sess.scalar(select(func.count()).select_from(MemoryRecord).where(MemoryRecord.agent_id == agent_id))
                or 0
            )

    def search_by_embedding(
        self,
        agent_id: str,
        embedding: Sequence[float] | np.ndarray,
        limit: int = 10,
        categories: Iterable[str] | None = None,
        min_confidence: float = 0.5,
        tier: str | None = None,
        exclude_ids: Iterable[str] = (),
        touch: bool = False,
    ) -> list[MemoryMatch]:
        """Nearest memories by cosine distance, ascending.

        With ``touch`` the returned memories get their access counters bumped;
        deduplication and linking search without touching.
        """
        category_list = list(categories) if categories else []
        excluded = set(exclude_ids)
        with self.sql_store.session() as sess:
            query = (
                select(MemoryRecord, MemoryVectorRecord.vec)
                .join(MemoryVectorRecord, MemoryVectorRecord.memory_id == MemoryRecord.memory_id)
                .where(MemoryRecord.agent_id == agent_id, MemoryRecord.confidence >= min_confidence)
            )
            if category_list:
                query = query.where(MemoryRecord.category.in_(category_list))
            if tier is not None:
                query = query.where(MemoryRecord.tier == tier)
            rows = [(rec, blob) for rec, blob in sess.execute(query).all() if rec.memory_id not in excluded]

            index = VectorIndex(dim=self.dim)
            by_id: dict[str, MemoryRecord] = {}
            for rec, blob in rows:
                vec = from_blob(blob)
                if vec.shape != (self.dim,):
                    logger.warning("Skipping memory %s with vector dimension %s", rec.memory_id, vec.shape)
                    continue
                index.add(rec.memory_id, vec)
                by_id[rec.memory_id] = rec

            hits = index.nearest(np.asarray(embedding, dtype=np.float32), limit)
            matches = [
                MemoryMatch(
                    memory_id=memory_id,
                    category=by_id[memory_id].category,  # type: ignore[arg-type]
                    tier=by_id[memory_id].tier,  # type: ignore[arg-type]
                    content=by_id[memory_id].content,
                    context=by_id[memory_id].context,
                    confidence=by_id[memory_id].confidence,
                    reinforcement_count=by_id[memory_id].reinforcement_count,
                    distance=distance,
                )
                for memory_id, distance in hits
            ]
            if touch and matches:
                sess.execute(
                    update(MemoryRecord)
                    .where(MemoryRecord.memory_id.in_([m.memory_id for m in matches]))
                    .values(
                        access_count=MemoryRecord.access_count + 1,
                        last_accessed_at=datetime.now(UTC),
                    )
                )
            return matches

    def get_related(self, memory_id: str, depth: int = 2) -> list[RelatedMemory]:
        """Memories reachable over outgoing links within ``depth`` hops."""
        reached = self.graph.traverse(memory_id, depth=depth)
        if not reached:
            return []
        with self.sql_store.session() as sess:
            contents = dict(
                sess.execute(
                    select(MemoryRecord.memory_id, MemoryRecord.content).where(
                        MemoryRecord.memory_id.in_({target for target, _, _ in reached})
                    )
                ).all()
            )
        related = [
            RelatedMemory(memory_id=target, relationship=rel, content=contents[target], distance=dist)  # type: ignore[arg-type]
            for target, rel, dist in reached
            if target in contents
        ]
        related.sort(key=lambda item: item.distance)
        return related

    def _outgoing_edges(self, sources: Iterable[str]) -> list[tuple[str, str, str]]:
        source_list = list(sources)
        with self.sql_store.session() as sess:
            rows = sess.execute(
                select(
                    MemoryLinkRecord.from_memory_id,
                    MemoryLinkRecord.to_memory_id,
                    MemoryLinkRecord.relationship,
                )
                .where(MemoryLinkRecord.from_memory_id.in_(source_list))
                .order_by(MemoryLinkRecord.created_at.asc())
            ).all()
            return [(src, dst, rel) for src, dst, rel in rows]

    def get_graph(self, agent_id: str, limit: int = 100) -> dict[str, list[dict[str, object]]]:
        """Nodes and edges of the agent's memory graph."""
        with self.sql_store.session() as sess:
            nodes = sess.scalars(
                select(MemoryRecord).where(MemoryRecord.agent_id == agent_id).limit(limit)
            ).all()
            links = sess.execute(
                select(
                    MemoryLinkRecord.from_memory_id,
                    MemoryLinkRecord.to_memory_id,
                    MemoryLinkRecord.relationship,
                )
                .join(MemoryRecord, MemoryRecord.memory_id == MemoryLinkRecord.from_memory_id)
                .where(MemoryRecord.agent_id == agent_id)
            ).all()
            return {
                "nodes": [
                    {
                        "id": row.memory_id,
                        "category": row.category,
                        "tier": row.tier,
                        "content": row.content,
                        "confidence": row.confidence,
                        "reinforcement_count": row.reinforcement_count,
                    }
                    for row in nodes
                ],
                "links": [
                    {"source": src, "target": dst, "relationship": rel} for src, dst, rel in links
                ],
            }

    def get_memory_stats(self, agent_id: str) -> MemoryStats:
        with self.sql_store.session() as sess:
            rows = sess.execute(
                select(
                    MemoryRecord.category,
                    MemoryRecord.tier,
                    MemoryRecord.system,
                    func.count(),
                    func.sum(MemoryRecord.confidence),
                    func.sum(MemoryRecord.reinforcement_count),
                    func.sum(MemoryRecord.access_count),
                )
                .where(MemoryRecord.agent_id == agent_id)
                .group_by(MemoryRecord.category, MemoryRecord.tier, MemoryRecord.system)
            ).all()

        stats = MemoryStats()
        conf_sum = 0.0
        for category, tier, system, count, conf, reinf, access in rows:
            stats.by_category[category] = stats.by_category.get(category, 0) + count
            stats.by_tier[tier] = stats.by_tier.get(tier, 0) + count
            stats.by_system[system] = stats.by_system.get(system, 0) + count
            stats.total_memories += count
            conf_sum += float(conf or 0.0)
            stats.total_reinforcements += int(reinf or 0)
            stats.total_accesses += int(access or 0)
        if stats.total_memories:
            stats.avg_confidence = conf_sum / stats.total_memories
        return stats

    def delete_memory(self, memory_id: str, agent_id: str | None = None) -> None:
        """Remove a memory together with its vector and every incident link."""
        with self.sql_store.session() as sess:
            row = sess.get(MemoryRecord, memory_id)
            if row is None or (agent_id is not None and row.agent_id != agent_id):
                raise MemoryNotFound(f"Memory {memory_id} not found for agent {agent_id}")
            sess.delete(row)
            sess.execute(delete(MemoryVectorRecord).where(MemoryVectorRecord.memory_id == memory_id))
            sess.execute(
                delete(MemoryLinkRecord).where(
                    or_(
                        MemoryLinkRecord.from_memory_id == memory_id,
                        MemoryLinkRecord.to_memory_id == memory_id,
                    )
                )
            )
        logger.info("Deleted memory %s", memory_id)

    # -- consolidation bookkeeping -------------------------------------------

    def record_consolidation_run(self, run_id: str, agent_id: str, llm_provider: str) -> None:
        with self.sql_store.session() as sess:
            sess.add(
                ConsolidationRunRecord(
                    run_id=run_id,
                    agent_id=agent_id,
                    started_at=datetime.now(UTC),
                    status="running",
                    llm_provider=llm_provider,
                )
            )

    def update_consolidation_run(
        self,
        run_id: str,
        status: str | None = None,
        conversations_processed: int | None = None,
        memories_created: int | None = None,
        memories_reinforced: int | None = None,
        memories_linked: int | None = None,
        error: str | None = None,
    ) -> None:
        values: dict[str, object] = {}
        if status is not None:
            values["status"] = status
            if status in {"completed", "failed"}:
                values["completed_at"] = datetime.now(UTC)
        for key, value in (
            ("conversations_processed", conversations_processed),
            ("memories_created", memories_created),
            ("memories_reinforced", memories_reinforced),
            ("memories_linked", memories_linked),
            ("error", error),
        ):
            if value is not None:
                values[key] = value
        if not values:
            return
        with self.sql_store.session() as sess:
            sess.execute(
                update(ConsolidationRunRecord)
                .where(ConsolidationRunRecord.run_id == run_id)
                .values(**values)
            )

    def get_consolidation_run(self, run_id: str) -> ConsolidationRun | None:
        with self.sql_store.session() as sess:
            row = sess.get(ConsolidationRunRecord, run_id)
            return self._run_to_model(row) if row else None

    def get_consolidation_runs(self, agent_id: str, limit: int = 10) -> list[ConsolidationRun]:
        with self.sql_store.session() as sess:
            rows = sess.scalars(
                select(ConsolidationRunRecord)
                .where(ConsolidationRunRecord.agent_id == agent_id)
                .order_by(ConsolidationRunRecord.started_at.desc())
                .limit(limit)
            ).all()
            return [self._run_to_model(row) for row in rows]

    def mark_conversation_consolidated(
        self,
        conversation_file: str,
        agent_id: str,
        run_id: str,
        message_count: int,
        memories_extracted: int,
    ) -> None:
        with self.sql_store.session() as sess:
            sess.merge(
                ConsolidatedConversationRecord(
                    conversation_file=conversation_file,
                    agent_id=agent_id,
                    run_id=run_id,
                    consolidated_at=datetime.now(UTC),
                    message_count=message_count,
                    memories_extracted=memories_extracted,
                )
            )

    def is_conversation_consolidated(self, conversation_file: str) -> bool:
        with self.sql_store.session() as sess:
            return sess.get(ConsolidatedConversationRecord, conversation_file) is not None

    def consolidated_files(self, agent_id: str) -> set[str]:
        with self.sql_store.session() as sess:
            return set(
                sess.scalars(
                    select(ConsolidatedConversationRecord.conversation_file).where(
                        ConsolidatedConversationRecord.agent_id == agent_id
                    )
                ).all()
            )

    @staticmethod
    def _memory_to_model(row: MemoryRecord) -> Memory:
        return Memory(
            memory_id=row.memory_id,
            agent_id=row.agent_id,
            tier=row.tier,  # type: ignore[arg-type]
            system=row.system,
            category=row.category,  # type: ignore[arg-type]
            content=row.content,
            context=row.context,
            source_conversations=list(row.source_conversations or []),
            confidence=row.confidence,
            created_at=as_utc(row.created_at),  # type: ignore[arg-type]
            last_reinforced_at=as_utc(row.last_reinforced_at),  # type: ignore[arg-type]
            reinforcement_count=row.reinforcement_count,
            access_count=row.access_count,
            last_accessed_at=as_utc(row.last_accessed_at),
            promoted_at=as_utc(row.promoted_at),
        )

    @staticmethod
    def _run_to_model(row: ConsolidationRunRecord) -> ConsolidationRun:
        return ConsolidationRun(
            run_id=row.run_id,
            agent_id=row.agent_id,
            started_at=as_utc(row.started_at),  # type: ignore[arg-type]
            completed_at=as_utc(row.completed_at),
            status=row.status,  # type: ignore[arg-type]
            conversations_processed=row.conversations_processed,
            memories_created=row.memories_created,
            memories_reinforced=row.memories_reinforced,
            memories_linked=row.memories_linked,
            llm_provider=row.llm_provider,
            error=row.error,
        )
