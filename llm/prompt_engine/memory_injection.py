"""Memory injection helper for prompt augmentation."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from memory.types.memory import MemoryMatch, RelatedMemory

CONTEXT_HEADER = "Relevant memories:"


def build_memory_context(
    memories: Sequence[MemoryMatch],
    related: Mapping[str, Sequence[RelatedMemory]] | None = None,
    max_chars: int = 8000,
) -> str:
    """Render retrieved memories as a bounded system-prompt block.

    Lines are added in retrieval order until ``max_chars`` would be exceeded.
    """
    if not memories:
        return ""
    lines = [CONTEXT_HEADER]
    used = len(CONTEXT_HEADER)
    for memory in memories:
        entry = [
            f"- [{memory.category}] {memory.content} "
            f"(confidence={memory.confidence:.2f}, reinforced={memory.reinforcement_count}x)"
        ]
        for link in (related or {}).get(memory.memory_id, []):
            entry.append(f"  - {link.relationship}: {link.content}")
        size = sum(len(line) + 1 for line in entry)
        if used + size > max_chars:
            break
        lines.extend(entry)
        used += size
    return "\n".join(lines) if len(lines) > 1 else ""


def inject_memory(messages: list[dict[str, str]], memory_block: str) -> list[dict[str, str]]:
    """Prepend the memory block as a system message."""
    if not memory_block:
        return messages
    return [{"role": "system", "content": memory_block}, *messages]
