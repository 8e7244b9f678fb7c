"""Base LLM interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class BaseLLM(ABC):
    """Abstract chat-completion backend."""

    name: str = "llm"

    def is_available(self) -> bool:
        """Whether the backend can be called right now."""
        return True

    @abstractmethod
    def chat(self, messages: list[dict[str, str]], **kwargs: Any) -> str:
        """Return assistant response text for a message list."""
