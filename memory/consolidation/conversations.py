"""Loading transcripts and formatting them for extraction."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from indexing.transcripts import iter_lines, parse_line, to_message
from memory.types.indexing import ConversationIndexEntry
from memory.types.transcript import PreparedConversation, TranscriptMessage

logger = logging.getLogger("ame.consolidate")

MAX_TURN_CHARS = 2000
TRUNCATION_MARKER = "... [truncated]"


def prepare_conversation(entry: ConversationIndexEntry) -> PreparedConversation | None:
    """Parse a transcript into user/assistant turns; None when it has no text turns."""
    messages: list[TranscriptMessage] = []
    for line in iter_lines(Path(entry.jsonl_file)):
        record = parse_line(line)
        if record is None:
            continue
        message = to_message(record)
        if message is None or not message.content.strip():
            continue
        messages.append(message.model_copy(update={"content": message.content.strip()}))
    if not messages:
        return None
    return PreparedConversation(
        file_path=entry.jsonl_file,
        project_path=entry.project_path,
        messages=messages,
        message_count=len(messages),
        first_message_at=entry.first_message_at,
        last_message_at=entry.last_message_at,
    )


def load_unconsolidated(
    entries: Iterable[ConversationIndexEntry],
    consolidated: set[str],
    limit: int = 50,
) -> list[PreparedConversation]:
    """Prepare up to ``limit`` transcripts that were never consolidated."""
    prepared: list[PreparedConversation] = []
    for entry in entries:
        if entry.jsonl_file in consolidated:
            continue
        if not Path(entry.jsonl_file).exists():
            continue
        try:
            conversation = prepare_conversation(entry)
        except (OSError, ValueError) as exc:
            logger.error("Error reading %s: %s", entry.jsonl_file, exc)
            continue
        if conversation is not None:
            prepared.append(conversation)
        if len(prepared) >= limit:
            break
    return prepared


def format_for_extraction(conversation: PreparedConversation) -> str:
    """Render turns as ``[ROLE]: content`` blocks, dropping tool-use turns."""
    blocks: list[str] = []
    for message in conversation.messages:
        if message.tool_use:
            continue
        content = message.content
        if len(content) > MAX_TURN_CHARS:
            content = content[:MAX_TURN_CHARS] + TRUNCATION_MARKER
        blocks.append(f"[{message.role.upper()}]: {content}")
    return "\n\n".join(blocks)
