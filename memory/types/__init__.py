"""Typed memory payload models."""

from memory.types.indexing import (
    AgentProfile,
    ConversationIndexEntry,
    DeltaFileResult,
    DeltaReportItem,
    IndexDeltaResult,
    PendingConversation,
)
from memory.types.memory import (
    CATEGORIES,
    ExtractedMemory,
    Memory,
    MemoryMatch,
    MemoryStats,
    RelatedMemory,
    RelationshipHint,
    category_system,
)
from memory.types.runs import (
    ConsolidationOptions,
    ConsolidationResult,
    ConsolidationRun,
    PromotionResult,
    PruneResult,
)
from memory.types.transcript import PreparedConversation, TranscriptMessage

__all__ = [
    "AgentProfile",
    "CATEGORIES",
    "ConsolidationOptions",
    "ConsolidationResult",
    "ConsolidationRun",
    "ConversationIndexEntry",
    "DeltaFileResult",
    "DeltaReportItem",
    "ExtractedMemory",
    "IndexDeltaResult",
    "Memory",
    "MemoryMatch",
    "MemoryStats",
    "PendingConversation",
    "PreparedConversation",
    "PromotionResult",
    "PruneResult",
    "RelatedMemory",
    "RelationshipHint",
    "TranscriptMessage",
    "category_system",
]
