"""Consolidation and tier maintenance result models."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from memory.types.memory import MemoryCategory

RunStatus = Literal["running", "completed", "failed"]
ProviderChoice = Literal["auto", "ollama", "openai", "groq", "mock"]


class ConsolidationOptions(BaseModel):
    """Per-run consolidation options."""

    dry_run: bool = False
    provider: ProviderChoice = "auto"
    max_conversations: int = Field(default=50, ge=1)
    min_confidence: float | None = None
    categories: list[MemoryCategory] | None = None


class ConsolidationResult(BaseModel):
    run_id: str
    status: RunStatus
    conversations_processed: int = 0
    memories_created: int = 0
    memories_reinforced: int = 0
    memories_linked: int = 0
    duration_ms: int = 0
    errors: list[str] = Field(default_factory=list)
    provider_used: str = "none"
    dry_run: bool = False


class ConsolidationRun(BaseModel):
    run_id: str
    agent_id: str
    started_at: datetime
    completed_at: datetime | None = None
    status: RunStatus
    conversations_processed: int = 0
    memories_created: int = 0
    memories_reinforced: int = 0
    memories_linked: int = 0
    llm_provider: str
    error: str | None = None


class PromotionResult(BaseModel):
    success: bool = True
    eligible: int = 0
    promoted: int = 0
    dry_run: bool = False
    error: str | None = None


class PruneResult(BaseModel):
    success: bool = True
    pruned: int = 0
    orphans_removed: int = 0
    dry_run: bool = False
    disabled: bool = False
    error: str | None = None
