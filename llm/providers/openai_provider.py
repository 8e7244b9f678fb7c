"""OpenAI provider with graceful fallback behavior."""

from __future__ import annotations

import logging
import os
from typing import Any

from openai import OpenAI, OpenAIError

from llm.base_llm import BaseLLM

logger = logging.getLogger("ame.llm.openai")


class OpenAIProvider(BaseLLM):
    """OpenAI API adapter. Available only when an API key is configured."""

    name = "openai"
    api_key_env = "OPENAI_API_KEY"
    base_url: str | None = None

    def __init__(self, model: str = "gpt-4o-mini") -> None:
        self.model = model

    def is_available(self) -> bool:
        return bool(os.getenv(self.api_key_env))

    def chat(self, messages: list[dict[str, str]], **kwargs: Any) -> str:
        api_key = os.getenv(self.api_key_env)
        if not api_key:
            return f"{self.name} provider unavailable: {self.api_key_env} not set."
        try:
            client = OpenAI(api_key=api_key, base_url=self.base_url)
            response = client.chat.completions.create(
                model=self.model,
                messages=messages,  # type: ignore[arg-type]
                temperature=kwargs.get("temperature", 0.2),
            )
        except OpenAIError as exc:
            logger.warning("%s call failed: %s", self.name, exc)
            return f"{self.name} provider failed gracefully: {exc}"
        content = response.choices[0].message.content
        return content or f"{self.name} returned an empty response."
