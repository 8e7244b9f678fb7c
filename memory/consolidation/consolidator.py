"""Memory consolidation: transcripts in, deduplicated memories out."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Sequence
from datetime import UTC, datetime

import numpy as np

from llm.embeddings import BaseEmbedder
from llm.extraction import ExtractionProvider
from memory.consolidation.conversations import format_for_extraction
from memory.consolidation.dedup import DUPLICATE_DISTANCE, check_duplicate
from memory.memory_store import MemoryStore, new_memory_id
from memory.types.memory import ExtractedMemory
from memory.types.runs import ConsolidationOptions, ConsolidationResult
from memory.types.transcript import PreparedConversation

logger = logging.getLogger("ame.consolidate")

NO_PROVIDER_ERROR = "No LLM provider available"
MIN_TEXT_CHARS = 100
PROGRESS_EVERY = 5
LINK_NEIGHBOURS = 10
LINK_MIN_CONFIDENCE = 0.5

ProviderSelector = Callable[[str], ExtractionProvider | None]


def new_run_id() -> str:
    return f"run-{int(datetime.now(UTC).timestamp() * 1000)}-{uuid.uuid4().hex[:8]}"


class _Counters:
    def __init__(self) -> None:
        self.processed = 0
        self.created = 0
        self.reinforced = 0
        self.linked = 0


class Consolidator:
    """Extracts memories from unconsolidated transcripts exactly once each."""

    def __init__(
        self,
        store: MemoryStore,
        embedder: BaseEmbedder,
        select_provider: ProviderSelector,
        min_confidence: float = 0.7,
        max_memories: int = 10,
        duplicate_distance: float = DUPLICATE_DISTANCE,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.select_provider = select_provider
        self.min_confidence = min_confidence
        self.max_memories = max_memories
        self.duplicate_distance = duplicate_distance

    def consolidate(
        self,
        agent_id: str,
        conversations: Sequence[PreparedConversation],
        options: ConsolidationOptions | None = None,
    ) -> ConsolidationResult:
        """Run one consolidation pass; failures are reported in the result, never raised."""
        options = options or ConsolidationOptions()
        started = time.monotonic()
        run_id = new_run_id()

        try:
            provider = self.select_provider(options.provider)
        except Exception as exc:
            logger.error("Provider selection failed for %s: %s", agent_id[:8], exc)
            return ConsolidationResult(
                run_id=run_id,
                status="failed",
                errors=[f"Provider selection failed: {exc}"],
                duration_ms=self._elapsed(started),
                dry_run=options.dry_run,
            )
        if provider is None:
            logger.warning("No extraction provider available for %s", agent_id[:8])
            return ConsolidationResult(
                run_id=run_id,
                status="failed",
                errors=[NO_PROVIDER_ERROR],
                duration_ms=self._elapsed(started),
                dry_run=options.dry_run,
            )

        counters = _Counters()
        errors: list[str] = []
        run_recorded = False
        try:
            if not options.dry_run:
                self.store.record_consolidation_run(run_id, agent_id, provider.name)
                run_recorded = True
            self._process(agent_id, run_id, conversations, options, provider, counters, errors)
        except Exception as exc:
            logger.exception("Consolidation run %s aborted", run_id)
            errors.append(f"Run error: {exc}")

        status = "failed" if errors and counters.processed == 0 else "completed"
        if run_recorded:
            try:
                self.store.update_consolidation_run(
                    run_id,
                    status=status,
                    conversations_processed=counters.processed,
                    memories_created=counters.created,
                    memories_reinforced=counters.reinforced,
                    memories_linked=counters.linked,
                    error="; ".join(errors) if errors else None,
                )
            except Exception as exc:
                logger.error("Failed to finalize run %s: %s", run_id, exc)
                errors.append(f"Finalize error: {exc}")

        result = ConsolidationResult(
            run_id=run_id,
            status=status,
            conversations_processed=counters.processed,
            memories_created=counters.created,
            memories_reinforced=counters.reinforced,
            memories_linked=counters.linked,
            duration_ms=self._elapsed(started),
            errors=errors,
            provider_used=provider.name,
            dry_run=options.dry_run,
        )
        logger.info(
            "Consolidation %s %s: %d conversations, %d created, %d reinforced, %d linked",
            run_id,
            status,
            counters.processed,
            counters.created,
            counters.reinforced,
            counters.linked,
        )
        return result

    def _process(
        self,
        agent_id: str,
        run_id: str,
        conversations: Sequence[PreparedConversation],
        options: ConsolidationOptions,
        provider: ExtractionProvider,
        counters: _Counters,
        errors: list[str],
    ) -> None:
        pending: list[PreparedConversation] = []
        for conversation in conversations:
            if self.store.is_conversation_consolidated(conversation.file_path):
                continue
            pending.append(conversation)
            if len(pending) >= options.max_conversations:
                break
        logger.info(
            "Processing %d conversations (%d skipped as consolidated)",
            len(pending),
            len(conversations) - len(pending),
        )

        min_confidence = options.min_confidence if options.min_confidence is not None else self.min_confidence
        for conversation in pending:
            try:
                text = format_for_extraction(conversation)
                if len(text) < MIN_TEXT_CHARS:
                    logger.info("Skipping short conversation %s", conversation.file_path)
                    continue
                candidates = provider.extract_memories(
                    text,
                    min_confidence=min_confidence,
                    max_memories=self.max_memories,
                    categories=options.categories,
                )
                logger.info("Extracted %d memories from %s", len(candidates), conversation.file_path)

                created_here = 0
                for candidate in candidates:
                    try:
                        created_here += self._apply(
                            agent_id, conversation, candidate, provider, options.dry_run, counters
                        )
                    except Exception as exc:
                        logger.error("Memory error in %s: %s", conversation.file_path, exc)
                        errors.append(f"Memory processing error: {exc}")

                if not options.dry_run:
                    self.store.mark_conversation_consolidated(
                        conversation.file_path,
                        agent_id,
                        run_id,
                        conversation.message_count,
                        created_here,
                    )
                counters.processed += 1

                if not options.dry_run and counters.processed % PROGRESS_EVERY == 0:
                    self.store.update_consolidation_run(
                        run_id,
                        conversations_processed=counters.processed,
                        memories_created=counters.created,
                        memories_reinforced=counters.reinforced,
                        memories_linked=counters.linked,
                    )
            except Exception as exc:
                logger.error("Conversation error (%s): %s", conversation.file_path, exc)
                errors.append(f"Conversation error ({conversation.file_path}): {exc}")

    def _apply(
        self,
        agent_id: str,
        conversation: PreparedConversation,
        candidate: ExtractedMemory,
        provider: ExtractionProvider,
        dry_run: bool,
        counters: _Counters,
    ) -> int:
        """Reinforce or create one candidate; returns 1 when a memory was created."""
        embedding = self.embedder.embed_one(candidate.content)
        decision = check_duplicate(
            self.store, agent_id, candidate.category, embedding, threshold=self.duplicate_distance
        )

        if dry_run:
            logger.info("[dry run] would %s %s: %s", decision.action, candidate.category, candidate.content[:100])
            if decision.action == "reinforce":
                counters.reinforced += 1
            else:
                counters.created += 1
            return 0

        if decision.action == "reinforce" and decision.existing_memory_id:
            self.store.reinforce_memory(
                decision.existing_memory_id,
                additional_context=candidate.context,
                source_conversation=conversation.file_path,
            )
            counters.reinforced += 1
            logger.info("Reinforced memory %s", decision.existing_memory_id)
            return 0

        memory = self.store.create_memory(
            agent_id=agent_id,
            category=candidate.category,
            content=candidate.content,
            confidence=candidate.confidence,
            context=candidate.context,
            source_conversations=[conversation.file_path],
            memory_id=new_memory_id(),
        )
        self.store.store_embedding(memory.memory_id, embedding)
        counters.created += 1
        logger.info("Created memory %s (%s)", memory.memory_id, candidate.category)
        counters.linked += self._link(agent_id, memory.memory_id, candidate.content, embedding, provider)
        return 1

    def _link(
        self,
        agent_id: str,
        memory_id: str,
        content: str,
        embedding: np.ndarray,
        provider: ExtractionProvider,
    ) -> int:
        try:
            neighbours = self.store.search_by_embedding(
                agent_id,
                embedding,
                limit=LINK_NEIGHBOURS,
                min_confidence=LINK_MIN_CONFIDENCE,
                exclude_ids=[memory_id],
            )
            if not neighbours:
                return 0
            known = {n.memory_id for n in neighbours}
            linked = 0
            for hint in provider.find_relationships(content, neighbours):
                if hint.memory_id not in known:
                    logger.debug("Ignoring relationship to unknown memory %s", hint.memory_id)
                    continue
                if self.store.link_memories(memory_id, hint.memory_id, hint.relationship):
                    linked += 1
                    logger.info("Linked %s -> %s (%s)", memory_id, hint.memory_id, hint.relationship)
            return linked
        except Exception as exc:
            logger.warning("Relationship finding failed for %s: %s", memory_id, exc)
            return 0

    @staticmethod
    def _elapsed(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
