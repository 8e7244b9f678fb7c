"""Memory extraction over chat LLM backends."""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from pydantic import ValidationError

from llm.base_llm import BaseLLM
from memory.types.memory import CATEGORIES, ExtractedMemory, MemoryMatch, RelationshipHint

logger = logging.getLogger("ame.llm.extraction")

EXTRACT_TASK = "TASK: extract_memories"
RELATE_TASK = "TASK: find_relationships"

EXTRACTION_PROMPT = """{task}
You distill durable knowledge from a coding agent's conversation.
Return ONLY a JSON array. Each element is an object with keys:
  "category": one of {categories}
  "content": one self-contained sentence
  "context": short note on where or why it came up (may be null)
  "confidence": number between 0.0 and 1.0
Extract at most {max_memories} items with confidence >= {min_confidence}.
Skip small talk, transient status updates and tool output.

<conversation>
{conversation}
</conversation>"""

RELATIONSHIP_PROMPT = """{task}
A new memory was just stored:
<candidate>
{candidate}
</candidate>
Existing memories:
<existing>
{existing}
</existing>
Return ONLY a JSON array of objects with keys "memory_id" (an id from the existing list)
and "relationship" (one of "leads_to", "contradicts", "supports", "supersedes").
Return [] when none apply."""


class ExtractionError(Exception):
    """Provider output could not be turned into memories."""


class ExtractionProvider(ABC):
    """Turns conversation text into candidate memories and relationships."""

    name: str

    @abstractmethod
    def is_available(self) -> bool: ...

    @abstractmethod
    def extract_memories(
        self,
        text: str,
        min_confidence: float = 0.7,
        max_memories: int = 10,
        categories: Sequence[str] | None = None,
    ) -> list[ExtractedMemory]: ...

    @abstractmethod
    def find_relationships(self, candidate: str, existing: Sequence[MemoryMatch]) -> list[RelationshipHint]: ...


def parse_json_array(response: str) -> list[Any]:
    """Pull the first JSON array out of a model response."""
    match = re.search(r"\[.*\]", response, re.DOTALL)
    if not match:
        raise ExtractionError(f"No JSON array in response: {response[:120]!r}")
    try:
        parsed = json.loads(match.group())
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"Malformed JSON in response: {exc}") from exc
    if not isinstance(parsed, list):
        raise ExtractionError("Response JSON is not an array")
    return parsed


class LLMExtractionProvider(ExtractionProvider):
    """Prompts a chat backend for JSON and validates the result."""

    def __init__(self, llm: BaseLLM, name: str | None = None) -> None:
        self.llm = llm
        self.name = name or llm.name

    def is_available(self) -> bool:
        return self.llm.is_available()

    def extract_memories(
        self,
        text: str,
        min_confidence: float = 0.7,
        max_memories: int = 10,
        categories: Sequence[str] | None = None,
    ) -> list[ExtractedMemory]:
        allowed = list(categories) if categories else list(CATEGORIES)
        prompt = EXTRACTION_PROMPT.format(
            task=EXTRACT_TASK,
            categories=", ".join(f'"{c}"' for c in allowed),
            max_memories=max_memories,
            min_confidence=min_confidence,
            conversation=text,
        )
        response = self.llm.chat([{"role": "user", "content": prompt}])
        memories: list[ExtractedMemory] = []
        for item in parse_json_array(response):
            try:
                memory = ExtractedMemory.model_validate(item)
            except ValidationError as exc:
                logger.warning("Dropping malformed memory from %s: %s", self.name, exc.errors()[:1])
                continue
            if memory.category not in allowed or memory.confidence < min_confidence:
                continue
            if not memory.content.strip():
                continue
            memories.append(memory)
            if len(memories) >= max_memories:
                break
        return memories

    def find_relationships(self, candidate: str, existing: Sequence[MemoryMatch]) -> list[RelationshipHint]:
        if not existing:
            return []
        listing = "\n".join(f"- {m.memory_id} [{m.category}]: {m.content}" for m in existing)
        prompt = RELATIONSHIP_PROMPT.format(task=RELATE_TASK, candidate=candidate, existing=listing)
        response = self.llm.chat([{"role": "user", "content": prompt}])
        hints: list[RelationshipHint] = []
        for item in parse_json_array(response):
            try:
                hints.append(RelationshipHint.model_validate(item))
            except ValidationError:
                logger.debug("Dropping malformed relationship from %s: %r", self.name, item)
        return hints
