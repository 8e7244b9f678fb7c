"""Service boundary for the memory engine.

Every public method returns a result model or a plain dict carrying
``success``/``error``; nothing raises past this layer.
"""

from __future__ import annotations

import logging
from typing import Any

from core.event_bus import (
    CONSOLIDATION_COMPLETED,
    INDEX_DELTA_COMPLETED,
    PROMOTION_COMPLETED,
    PRUNE_COMPLETED,
)
from core.orchestrator import RuntimeBundle
from llm.prompt_engine.memory_injection import build_memory_context
from memory.consolidation.consolidator import new_run_id
from memory.consolidation.conversations import load_unconsolidated
from memory.memory_store import MemoryNotFound
from memory.types.indexing import IndexDeltaResult
from memory.types.runs import ConsolidationOptions, ConsolidationResult, PromotionResult, PruneResult

logger = logging.getLogger("ame.service")


def _failure(agent_id: str, exc: BaseException) -> dict[str, Any]:
    return {"success": False, "agent_id": agent_id, "error": str(exc) or exc.__class__.__name__}


class MemoryService:
    """Per-agent operations over a shared runtime bundle."""

    def __init__(self, runtime: RuntimeBundle) -> None:
        self.runtime = runtime

    def initialize(self, agent_id: str) -> dict[str, Any]:
        """Create the agent's schema; repeated calls are harmless."""
        try:
            store = self.runtime.store_for(agent_id)
            existed = store.sql_store.has_schema()
            store.initialize()
            return {"success": True, "agent_id": agent_id, "created": not existed}
        except Exception as exc:
            logger.error("initialize failed for %s: %s", agent_id, exc)
            return _failure(agent_id, exc)

    def run_index_delta(
        self, agent_id: str, dry_run: bool = False, batch_size: int | None = None
    ) -> IndexDeltaResult:
        try:
            indexer = self.runtime.indexer_for(agent_id)
        except Exception as exc:
            return IndexDeltaResult(success=False, agent_id=agent_id, dry_run=dry_run, error=str(exc))
        result = indexer.run(
            self.runtime.profile(agent_id),
            dry_run=dry_run,
            batch_size=batch_size or self.runtime.settings.indexing.batch_size,
        )
        self.runtime.event_bus.emit(INDEX_DELTA_COMPLETED, result.model_dump(mode="json"))
        return result

    def consolidate(self, agent_id: str, options: ConsolidationOptions | None = None) -> ConsolidationResult:
        """Consolidate the agent's unconsolidated transcripts."""
        options = options or ConsolidationOptions(
            provider=self.runtime.settings.consolidation.provider,
            max_conversations=self.runtime.settings.consolidation.max_conversations,
        )
        try:
            store = self.runtime.store_for(agent_id)
            conversations = load_unconsolidated(
                self.runtime.conversation_index(agent_id).get_conversations(),
                store.consolidated_files(agent_id),
                limit=options.max_conversations,
            )
            if not conversations:
                logger.info("No conversations to consolidate for %s", agent_id[:8])
                result = ConsolidationResult(run_id=new_run_id(), status="completed", dry_run=options.dry_run)
            else:
                result = self.runtime.consolidator_for(agent_id).consolidate(agent_id, conversations, options)
        except Exception as exc:
            logger.error("consolidate failed for %s: %s", agent_id, exc)
            result = ConsolidationResult(
                run_id=new_run_id(), status="failed", errors=[str(exc)], dry_run=options.dry_run
            )
        self.runtime.event_bus.emit(
            CONSOLIDATION_COMPLETED, {"agent_id": agent_id, **result.model_dump(mode="json")}
        )
        return result

    def promote(
        self,
        agent_id: str,
        min_reinforcements: int | None = None,
        min_age_days: float | None = None,
        dry_run: bool = False,
    ) -> PromotionResult:
        retention = self.runtime.settings.retention
        try:
            result = self.runtime.tiers_for(agent_id).promote(
                agent_id,
                min_reinforcements=min_reinforcements or retention.promote_min_reinforcements,
                min_age_days=retention.promote_min_age_days if min_age_days is None else min_age_days,
                dry_run=dry_run,
            )
        except Exception as exc:
            logger.error("promote failed for %s: %s", agent_id, exc)
            result = PromotionResult(success=False, dry_run=dry_run, error=str(exc))
        self.runtime.event_bus.emit(PROMOTION_COMPLETED, {"agent_id": agent_id, **result.model_dump(mode="json")})
        return result

    def prune(self, agent_id: str, retention_days: float | None = None, dry_run: bool = False) -> PruneResult:
        if retention_days is None:
            retention_days = self.runtime.settings.retention.short_term_days
        try:
            result = self.runtime.tiers_for(agent_id).prune(agent_id, retention_days=retention_days, dry_run=dry_run)
        except Exception as exc:
            logger.error("prune failed for %s: %s", agent_id, exc)
            result = PruneResult(success=False, dry_run=dry_run, error=str(exc))
        self.runtime.event_bus.emit(PRUNE_COMPLETED, {"agent_id": agent_id, **result.model_dump(mode="json")})
        return result

    def consolidation_status(self, agent_id: str, limit: int = 20) -> dict[str, Any]:
        try:
            store = self.runtime.store_for(agent_id)
            stats = store.get_memory_stats(agent_id)
            runs = store.get_consolidation_runs(agent_id, limit=limit)
            return {
                "success": True,
                "agent_id": agent_id,
                "memory_stats": {"by_category": stats.by_category, "total": stats.total_memories},
                "recent_runs": [run.model_dump(mode="json") for run in runs],
            }
        except Exception as exc:
            return _failure(agent_id, exc)

    def query_memories(
        self,
        agent_id: str,
        query: str | None = None,
        category: str | None = None,
        limit: int = 20,
        include_related: bool = False,
        min_confidence: float = 0.0,
        tier: str | None = None,
    ) -> dict[str, Any]:
        """Semantic search when ``query`` is given, else category or recent listing."""
        try:
            store = self.runtime.store_for(agent_id)
            if query:
                matches = store.search_by_embedding(
                    agent_id,
                    self.runtime.embedder.embed_one(query),
                    limit=limit,
                    categories=[category] if category else None,
                    min_confidence=min_confidence,
                    tier=tier,
                    touch=True,
                )
                memories: list[dict[str, Any]] = []
                for match in matches:
                    item = match.model_dump(mode="json")
                    if include_related:
                        item["related"] = [r.model_dump(mode="json") for r in store.get_related(match.memory_id)]
                    memories.append(item)
                return {"success": True, "agent_id": agent_id, "query": query, "memories": memories, "count": len(memories)}
            if category:
                rows = store.get_memories_by_category(agent_id, category, limit=limit)
            else:
                rows = store.get_recent_memories(agent_id, limit=limit)
            listed = [m.model_dump(mode="json") for m in rows]
            return {"success": True, "agent_id": agent_id, "category": category, "memories": listed, "count": len(listed)}
        except Exception as exc:
            return _failure(agent_id, exc)

    def related(self, agent_id: str, memory_id: str, depth: int = 2) -> dict[str, Any]:
        try:
            store = self.runtime.store_for(agent_id)
            memory = store.get_memory(memory_id)
            if memory is None or memory.agent_id != agent_id:
                return {"success": False, "agent_id": agent_id, "error": "Memory not found"}
            related = store.get_related(memory_id, depth=depth)
            return {
                "success": True,
                "agent_id": agent_id,
                "memory_id": memory_id,
                "related": [r.model_dump(mode="json") for r in related],
            }
        except Exception as exc:
            return _failure(agent_id, exc)

    def memory_context(self, agent_id: str, query: str, limit: int = 10, max_chars: int = 8000) -> dict[str, Any]:
        """Prompt-ready block of memories relevant to ``query``."""
        try:
            store = self.runtime.store_for(agent_id)
            matches = store.search_by_embedding(
                agent_id, self.runtime.embedder.embed_one(query), limit=limit, touch=True
            )
            related = {m.memory_id: store.get_related(m.memory_id, depth=1) for m in matches}
            context = build_memory_context(matches, related, max_chars=max_chars)
            return {"success": True, "agent_id": agent_id, "query": query, "context": context}
        except Exception as exc:
            return _failure(agent_id, exc)

    def stats(self, agent_id: str) -> dict[str, Any]:
        try:
            stats = self.runtime.store_for(agent_id).get_memory_stats(agent_id)
            return {"success": True, "agent_id": agent_id, "stats": stats.model_dump(mode="json")}
        except Exception as exc:
            return _failure(agent_id, exc)

    def graph(self, agent_id: str, limit: int = 100) -> dict[str, Any]:
        try:
            graph = self.runtime.store_for(agent_id).get_graph(agent_id, limit=limit)
            return {"success": True, "agent_id": agent_id, "graph": graph, "count": len(graph["nodes"])}
        except Exception as exc:
            return _failure(agent_id, exc)

    def delete_memory(self, agent_id: str, memory_id: str) -> dict[str, Any]:
        try:
            self.runtime.store_for(agent_id).delete_memory(memory_id, agent_id=agent_id)
            return {"success": True, "agent_id": agent_id, "deleted": memory_id}
        except MemoryNotFound:
            return {"success": False, "agent_id": agent_id, "error": "Memory not found"}
        except Exception as exc:
            return _failure(agent_id, exc)

    def update_memory(
        self,
        agent_id: str,
        memory_id: str,
        content: str | None = None,
        category: str | None = None,
        context: str | None = None,
    ) -> dict[str, Any]:
        if not content and not category and context is None:
            return {"success": False, "agent_id": agent_id, "error": "Nothing to update"}
        try:
            store = self.runtime.store_for(agent_id)
            before = store.get_memory(memory_id)
            memory = store.update_memory(memory_id, agent_id, content=content, category=category, context=context)
            if before is not None and memory.content != before.content:
                store.store_embedding(memory_id, self.runtime.embedder.embed_one(memory.content))
            return {"success": True, "agent_id": agent_id, "memory": memory.model_dump(mode="json")}
        except MemoryNotFound:
            return {"success": False, "agent_id": agent_id, "error": "Memory not found"}
        except Exception as exc:
            return _failure(agent_id, exc)
