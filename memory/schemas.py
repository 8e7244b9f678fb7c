"""SQLAlchemy schemas for the per-agent memory database."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    """Return UTC datetime for default timestamps."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on read; stored values are always UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class Base(DeclarativeBase):
    """Declarative base."""


# -- Long-term memory ------------------------------------------------------


class MemoryRecord(Base):
    """Distilled memory table (warm and long tiers)."""

    __tablename__ = "memories"
    __table_args__ = (
        Index("ix_memories_agent_tier", "agent_id", "tier"),
        Index("ix_memories_agent_category", "agent_id", "category"),
    )

    memory_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    agent_id: Mapped[str] = mapped_column(String(128))
    tier: Mapped[str] = mapped_column(String(8), default="warm")
    system: Mapped[int] = mapped_column(Integer, default=1)
    category: Mapped[str] = mapped_column(String(16))
    content: Mapped[str] = mapped_column(Text)
    context: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_conversations: Mapped[list[str]] = mapped_column(JSON, default=list)
    confidence: Mapped[float] = mapped_column(Float, default=0.5)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    last_reinforced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    reinforcement_count: Mapped[int] = mapped_column(Integer, default=1)
    access_count: Mapped[int] = mapped_column(Integer, default=0)
    last_accessed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    promoted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class MemoryVectorRecord(Base):
    """One float32 embedding per memory."""

    __tablename__ = "memory_vec"

    memory_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    vec: Mapped[bytes] = mapped_column(LargeBinary)


class MemoryLinkRecord(Base):
    """Directed relationship edge between two memories."""

    __tablename__ = "memory_links"
    __table_args__ = (Index("ix_memory_links_to", "to_memory_id"),)

    from_memory_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    to_memory_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    relationship: Mapped[str] = mapped_column(String(16), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class ConsolidationRunRecord(Base):
    """One row per consolidation invocation."""

    __tablename__ = "consolidation_runs"

    run_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    agent_id: Mapped[str] = mapped_column(String(128), index=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="running")
    conversations_processed: Mapped[int] = mapped_column(Integer, default=0)
    memories_created: Mapped[int] = mapped_column(Integer, default=0)
    memories_reinforced: Mapped[int] = mapped_column(Integer, default=0)
    memories_linked: Mapped[int] = mapped_column(Integer, default=0)
    llm_provider: Mapped[str] = mapped_column(String(32))
    error: Mapped[str | None] = mapped_column(Text, nullable=True)


class ConsolidatedConversationRecord(Base):
    """Marks a transcript as already distilled into memories."""

    __tablename__ = "consolidated_conversations"

    conversation_file: Mapped[str] = mapped_column(Text, primary_key=True)
    agent_id: Mapped[str] = mapped_column(String(128), index=True)
    run_id: Mapped[str] = mapped_column(String(64))
    consolidated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    message_count: Mapped[int] = mapped_column(Integer, default=0)
    memories_extracted: Mapped[int] = mapped_column(Integer, default=0)


# -- Short-term index ------------------------------------------------------


class ProjectRecord(Base):
    """Project directory whose transcripts belong to the agent."""

    __tablename__ = "projects"

    project_path: Mapped[str] = mapped_column(Text, primary_key=True)
    project_name: Mapped[str] = mapped_column(String(256))
    transcript_dir: Mapped[str] = mapped_column(Text)


class ConversationRecord(Base):
    """Conversation index entry, one per transcript file."""

    __tablename__ = "conversations"

    jsonl_file: Mapped[str] = mapped_column(Text, primary_key=True)
    project_path: Mapped[str] = mapped_column(Text, index=True)
    session_id: Mapped[str] = mapped_column(String(128), default="unknown")
    first_user_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    git_branch: Mapped[str | None] = mapped_column(String(256), nullable=True)
    client_version: Mapped[str | None] = mapped_column(String(64), nullable=True)
    first_message_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_message_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    message_count: Mapped[int] = mapped_column(Integer, default=0)
    last_indexed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_indexed_message_count: Mapped[int] = mapped_column(Integer, default=0)


class MessageRecord(Base):
    """Raw transcript message in the short-term index."""

    __tablename__ = "messages"
    __table_args__ = (Index("ix_messages_conversation_ts", "conversation_file", "ts"),)

    msg_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    conversation_file: Mapped[str] = mapped_column(Text)
    line_no: Mapped[int] = mapped_column(Integer)
    role: Mapped[str] = mapped_column(String(16))
    ts: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    text: Mapped[str] = mapped_column(Text)


class MessageVectorRecord(Base):
    """Embedding for a short-term message."""

    __tablename__ = "msg_vec"

    msg_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    vec: Mapped[bytes] = mapped_column(LargeBinary)


class MessageTermRecord(Base):
    """Lexical term index row."""

    __tablename__ = "msg_terms"

    msg_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    term: Mapped[str] = mapped_column(String(128), primary_key=True)


class CodeSymbolRecord(Base):
    """Code identifier mentioned in a message."""

    __tablename__ = "code_symbols"

    msg_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    symbol: Mapped[str] = mapped_column(String(256), primary_key=True)
