"""Deterministic local fallback LLM provider for offline usage."""

from __future__ import annotations

import json
import re

from llm.base_llm import BaseLLM
from llm.extraction import EXTRACT_TASK, RELATE_TASK

# First matching rule wins; checked in order.
_CATEGORY_RULES: list[tuple[str, re.Pattern[str], float]] = [
    ("decision", re.compile(r"\b(decided|we will|we'll|let's use|going with|chose|switch(?:ed)? to)\b", re.I), 0.85),
    ("preference", re.compile(r"\b(prefer|always|never|please don't|i like|i want)\b", re.I), 0.8),
    ("pattern", re.compile(r"\b(whenever|every time|each time|usually|tends to)\b", re.I), 0.75),
    ("insight", re.compile(r"\b(realized|turns out|learned|root cause|the issue was)\b", re.I), 0.8),
    ("reasoning", re.compile(r"\b(because|therefore|so that|in order to)\b", re.I), 0.7),
    ("fact", re.compile(r"\b(uses|is using|runs on|is configured|depends on|lives in)\b", re.I), 0.75),
]
_ROLE_PREFIX = re.compile(r"^\[(?:USER|ASSISTANT)\]:\s*")


class MockProvider(BaseLLM):
    """Rule-based local responder when external LLM backends are unavailable."""

    name = "mock"

    @staticmethod
    def _section(prompt: str, tag: str) -> str:
        match = re.search(rf"<{tag}>\n?(.*?)\n?</{tag}>", prompt, re.DOTALL)
        return match.group(1) if match else ""

    @staticmethod
    def _sentences(text: str) -> list[str]:
        sentences: list[str] = []
        for block in text.split("\n\n"):
            block = _ROLE_PREFIX.sub("", block.strip())
            for part in re.split(r"(?<=[.!?])\s+|\n", block):
                part = part.strip()
                if 12 <= len(part) <= 400:
                    sentences.append(part)
        return sentences

    def _extract(self, prompt: str) -> str:
        category_line = re.search(r'"category": one of (.*)', prompt)
        allowed = set(re.findall(r'"(\w+)"', category_line.group(1))) if category_line else set()
        limit_match = re.search(r"at most (\d+) items", prompt)
        limit = int(limit_match.group(1)) if limit_match else 10
        found: list[dict[str, object]] = []
        seen: set[str] = set()
        for sentence in self._sentences(self._section(prompt, "conversation")):
            for category, pattern, confidence in _CATEGORY_RULES:
                if not pattern.search(sentence):
                    continue
                key = sentence.lower()
                if category in allowed and key not in seen:
                    seen.add(key)
                    found.append(
                        {
                            "category": category,
                            "content": sentence.rstrip(),
                            "context": None,
                            "confidence": confidence,
                        }
                    )
                break
            if len(found) >= limit:
                break
        return json.dumps(found)

    def chat(self, messages: list[dict[str, str]], **kwargs: object) -> str:
        """Generate deterministic JSON for extraction prompts."""
        _ = kwargs
        if not messages:
            return "No input received."
        prompt = messages[-1]["content"]
        if prompt.startswith(EXTRACT_TASK):
            return self._extract(prompt)
        if prompt.startswith(RELATE_TASK):
            return "[]"
        return "Local fallback response."
