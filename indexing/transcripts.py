"""Reading JSONL conversation transcripts."""

from __future__ import annotations

import json
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from memory.types.transcript import TranscriptMessage

HEADER_BYTES = 4096
HEADER_LINES = 20
FIRST_MESSAGE_CHARS = 100


@dataclass
class TranscriptHeader:
    """Metadata found in the first lines of a transcript."""

    session_id: str | None = None
    cwd: str | None = None
    first_user_message: str | None = None
    git_branch: str | None = None
    client_version: str | None = None
    first_message_at: datetime | None = None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO-8601 strings or epoch milliseconds into aware UTC datetimes."""
    if value is None or value == "":
        return None
    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value / 1000, tz=UTC)
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except (ValueError, OverflowError, OSError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def parse_line(line: str) -> dict[str, Any] | None:
    """Decode one transcript line; malformed or non-object lines yield None."""
    try:
        record = json.loads(line)
    except json.JSONDecodeError:
        return None
    return record if isinstance(record, dict) else None


def message_text(record: dict[str, Any]) -> tuple[str, bool]:
    """Return the text blocks of a message and whether it carried tool use."""
    message = record.get("message")
    content = message.get("content") if isinstance(message, dict) else record.get("content")
    if isinstance(content, str):
        return content, False
    if not isinstance(content, list):
        return "", False
    texts: list[str] = []
    tool_use = False
    for block in content:
        if not isinstance(block, dict):
            continue
        kind = block.get("type")
        if kind == "text" and isinstance(block.get("text"), str):
            texts.append(block["text"])
        elif kind in {"tool_use", "tool_result"}:
            tool_use = True
    return "\n".join(texts), tool_use


def record_role(record: dict[str, Any]) -> str | None:
    kind = record.get("type")
    if kind in {"user", "assistant"}:
        return kind
    message = record.get("message")
    if isinstance(message, dict) and message.get("role") in {"user", "assistant"}:
        return message["role"]
    return None


def to_message(record: dict[str, Any]) -> TranscriptMessage | None:
    """Convert a user/assistant record into a TranscriptMessage."""
    role = record_role(record)
    if role is None:
        return None
    text, tool_use = message_text(record)
    return TranscriptMessage(
        role=role,
        content=text,
        timestamp=parse_timestamp(record.get("timestamp")),
        tool_use=tool_use,
    )


def iter_lines(path: Path) -> Iterator[str]:
    """Yield non-empty lines without loading the whole file."""
    with path.open("r", encoding="utf-8", errors="replace") as handle:
        for line in handle:
            if line.strip():
                yield line


def count_lines(path: Path) -> int:
    """Count non-empty lines with a streaming read."""
    return sum(1 for _ in iter_lines(path))


def _text_field(record: dict[str, Any], key: str) -> str | None:
    value = record.get(key)
    return value if isinstance(value, str) and value else None


def read_header(path: Path) -> TranscriptHeader:
    """Extract metadata from the first 4 KiB / 20 lines of a transcript."""
    with path.open("rb") as handle:
        raw = handle.read(HEADER_BYTES)
    header = TranscriptHeader()
    for line in raw.decode("utf-8", errors="replace").split("\n")[:HEADER_LINES]:
        if not line.strip():
            continue
        record = parse_line(line)
        if record is None:
            continue
        header.session_id = header.session_id or _text_field(record, "sessionId")
        header.cwd = header.cwd or _text_field(record, "cwd")
        header.git_branch = header.git_branch or _text_field(record, "gitBranch")
        header.client_version = header.client_version or _text_field(record, "version")
        ts = parse_timestamp(record.get("timestamp"))
        if ts is not None and (header.first_message_at is None or ts < header.first_message_at):
            header.first_message_at = ts
        if header.first_user_message is None and record_role(record) == "user":
            text, _ = message_text(record)
            if text.strip():
                flat = text[:FIRST_MESSAGE_CHARS].replace("\r", " ").replace("\n", " ")
                header.first_user_message = flat.strip()
    return header
