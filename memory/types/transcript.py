"""Transcript message models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class TranscriptMessage(BaseModel):
    """Single user/assistant turn parsed from a transcript line."""

    role: str
    content: str
    timestamp: datetime | None = None
    tool_use: bool = False


class PreparedConversation(BaseModel):
    """Transcript loaded and parsed for consolidation."""

    file_path: str
    project_path: str = ""
    messages: list[TranscriptMessage] = Field(default_factory=list)
    message_count: int = 0
    first_message_at: datetime | None = None
    last_message_at: datetime | None = None
