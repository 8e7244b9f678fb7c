"""Groq LLM provider (OpenAI-compatible API)."""

from __future__ import annotations

from llm.providers.openai_provider import OpenAIProvider


class GroqProvider(OpenAIProvider):
    """Groq inference adapter over the OpenAI-compatible endpoint."""

    name = "groq"
    api_key_env = "GROQ_API_KEY"
    base_url = "https://api.groq.com/openai/v1"

    def __init__(self, model: str = "llama-3.3-70b-versatile") -> None:
        super().__init__(model=model)
