"""Conversation index and delta indexing models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class AgentProfile(BaseModel):
    """What the indexer knows about an agent from outside the store."""

    agent_id: str
    working_directories: list[str] = Field(default_factory=list)
    session_ids: list[str] = Field(default_factory=list)


class ConversationIndexEntry(BaseModel):
    jsonl_file: str
    project_path: str
    session_id: str = "unknown"
    first_user_message: str | None = None
    git_branch: str | None = None
    client_version: str | None = None
    first_message_at: datetime | None = None
    last_message_at: datetime | None = None
    message_count: int = 0
    last_indexed_at: datetime | None = None
    last_indexed_message_count: int = 0


class PendingConversation(BaseModel):
    entry: ConversationIndexEntry
    current_line_count: int
    size: int = 0

    @property
    def delta(self) -> int:
        return self.current_line_count - self.entry.last_indexed_message_count


class DeltaReportItem(BaseModel):
    file: str
    last_indexed: int
    current_messages: int
    delta_to_index: int


class DeltaFileResult(BaseModel):
    file: str
    delta: int
    processed: int
    duration_ms: int


class IndexDeltaResult(BaseModel):
    success: bool
    agent_id: str
    message: str | None = None
    dry_run: bool = False
    new_conversations_discovered: int = 0
    conversations_indexed: int | None = None
    conversations_needing_index: int | None = None
    total_messages_processed: int = 0
    total_duration_ms: int | None = None
    results: list[DeltaFileResult] | None = None
    report: list[DeltaReportItem] | None = None
    errors: list[str] = Field(default_factory=list)
    error: str | None = None
