"""Top-level application orchestrator."""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from core.event_bus import EventBus
from core.policy_runtime import EngineSettings, ensure_runtime_dirs, load_effective_config
from indexing.admission import IndexAdmission
from indexing.cache import FileSizeCache, TranscriptCatalog
from indexing.conversation_index import ConversationIndex
from indexing.delta_index import DeltaIndexer
from llm.embeddings import BaseEmbedder, build_embedder
from llm.extraction import ExtractionProvider
from llm.llm_factory import select_extraction_provider
from memory.consolidation.consolidator import Consolidator
from memory.consolidation.tiers import TierMaintenance
from memory.memory_store import MemoryStore
from memory.stores.sql_store import SQLStore
from memory.types.indexing import AgentProfile

_AGENT_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


@dataclass
class RuntimeBundle:
    """Process-wide components plus lazily opened per-agent stores."""

    config: dict[str, Any]
    settings: EngineSettings
    data_dir: Path
    embedder: BaseEmbedder
    admission: IndexAdmission
    size_cache: FileSizeCache
    catalog: TranscriptCatalog
    event_bus: EventBus
    _stores: dict[str, MemoryStore] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def store_for(self, agent_id: str) -> MemoryStore:
        """Open (once) the agent's own database."""
        if not _AGENT_ID_RE.match(agent_id):
            raise ValueError(f"Invalid agent id: {agent_id!r}")
        with self._lock:
            store = self._stores.get(agent_id)
            if store is None:
                store = MemoryStore(SQLStore(self.data_dir / f"{agent_id}.db"), dim=self.embedder.dim)
                self._stores[agent_id] = store
            return store

    def profile(self, agent_id: str) -> AgentProfile:
        agent_cfg = self.settings.agents.get(agent_id)
        if agent_cfg is None:
            return AgentProfile(agent_id=agent_id)
        return AgentProfile(
            agent_id=agent_id,
            working_directories=agent_cfg.working_directories,
            session_ids=agent_cfg.session_ids,
        )

    def agent_ids(self) -> list[str]:
        """Configured agents plus any agent with a database on disk."""
        known = set(self.settings.agents)
        known.update(path.stem for path in self.data_dir.glob("*.db"))
        return sorted(known)

    def conversation_index(self, agent_id: str) -> ConversationIndex:
        return ConversationIndex(self.store_for(agent_id).sql_store)

    def indexer_for(self, agent_id: str) -> DeltaIndexer:
        return DeltaIndexer(
            sql_store=self.store_for(agent_id).sql_store,
            embedder=self.embedder,
            admission=self.admission,
            size_cache=self.size_cache,
            catalog=self.catalog,
        )

    def select_provider(self, choice: str) -> ExtractionProvider | None:
        return select_extraction_provider(choice, self.config)

    def consolidator_for(self, agent_id: str) -> Consolidator:
        cons = self.settings.consolidation
        return Consolidator(
            store=self.store_for(agent_id),
            embedder=self.embedder,
            select_provider=self.select_provider,
            min_confidence=cons.min_confidence,
            max_memories=cons.max_memories_per_conversation,
            duplicate_distance=cons.duplicate_distance,
        )

    def tiers_for(self, agent_id: str) -> TierMaintenance:
        return TierMaintenance(self.store_for(agent_id))

    def close(self) -> None:
        with self._lock:
            for store in self._stores.values():
                store.sql_store.dispose()
            self._stores.clear()


class Orchestrator:
    """Creates and wires runtime components for CLI and scheduler use."""

    def __init__(self, root: Path | None = None, config_path: Path | None = None) -> None:
        default_root = Path(__file__).resolve().parents[1]
        self.root = (root or default_root).resolve()
        self.config_path = config_path

    def build(self) -> RuntimeBundle:
        config = load_effective_config(self.root, self.config_path)
        return self.build_from_config(config)

    def build_from_config(self, config: dict[str, Any]) -> RuntimeBundle:
        settings = EngineSettings.from_config(config)
        paths = ensure_runtime_dirs(self.root, config)
        return RuntimeBundle(
            config=config,
            settings=settings,
            data_dir=paths["data_dir"],
            embedder=build_embedder(config),
            admission=IndexAdmission(max_concurrent=settings.indexing.max_concurrent),
            size_cache=FileSizeCache(),
            catalog=TranscriptCatalog(
                paths["transcripts_root"], ttl_seconds=settings.indexing.catalog_ttl_seconds
            ),
            event_bus=EventBus(),
        )
