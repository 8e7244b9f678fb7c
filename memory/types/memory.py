"""Long-term memory models."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

MemoryCategory = Literal["fact", "decision", "preference", "pattern", "insight", "reasoning"]
MemoryTier = Literal["warm", "long"]
RelationshipType = Literal["leads_to", "contradicts", "supports", "supersedes"]

CATEGORIES: tuple[str, ...] = ("fact", "decision", "preference", "pattern", "insight", "reasoning")

# System 1 holds knowledge, system 2 holds reasoning.
_SYSTEM_TWO = {"pattern", "insight", "reasoning"}


def category_system(category: str) -> int:
    """Return the memory system (1 or 2) for a category."""
    return 2 if category in _SYSTEM_TWO else 1


class Memory(BaseModel):
    """A distilled unit of knowledge."""

    memory_id: str
    agent_id: str
    tier: MemoryTier = "warm"
    system: int = 1
    category: MemoryCategory
    content: str
    context: str | None = None
    source_conversations: list[str] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    created_at: datetime
    last_reinforced_at: datetime
    reinforcement_count: int = Field(default=1, ge=1)
    access_count: int = Field(default=0, ge=0)
    last_accessed_at: datetime | None = None
    promoted_at: datetime | None = None


class ExtractedMemory(BaseModel):
    """Candidate memory proposed by an extraction provider."""

    category: MemoryCategory
    content: str
    context: str | None = None
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)


class RelationshipHint(BaseModel):
    """Relationship from a new memory to an existing one."""

    memory_id: str
    relationship: RelationshipType


class MemoryMatch(BaseModel):
    """Similarity search hit; distance is cosine distance (lower is closer)."""

    memory_id: str
    category: MemoryCategory
    tier: MemoryTier
    content: str
    context: str | None = None
    confidence: float
    reinforcement_count: int
    distance: float


class RelatedMemory(BaseModel):
    memory_id: str
    relationship: RelationshipType
    content: str
    distance: int


class MemoryStats(BaseModel):
    total_memories: int = 0
    by_category: dict[str, int] = Field(default_factory=dict)
    by_tier: dict[str, int] = Field(default_factory=dict)
    by_system: dict[int, int] = Field(default_factory=dict)
    avg_confidence: float = 0.0
    total_reinforcements: int = 0
    total_accesses: int = 0
