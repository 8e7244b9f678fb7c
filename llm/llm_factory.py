"""LLM provider factory."""

from __future__ import annotations

import logging
from typing import Any

from llm.base_llm import BaseLLM
from llm.extraction import ExtractionProvider, LLMExtractionProvider
from llm.local.ollama_provider import OllamaProvider
from llm.providers.groq_provider import GroqProvider
from llm.providers.mock_provider import MockProvider
from llm.providers.openai_provider import OpenAIProvider

logger = logging.getLogger("ame.llm")

# Order tried by "auto": local first, then hosted.
AUTO_ORDER = ("ollama", "openai", "groq")


def build_llm(name: str, config: dict[str, Any]) -> BaseLLM:
    """Build one chat backend by provider name."""
    providers = config.get("models", {}).get("llm", {}).get("providers", {})
    provider_cfg = providers.get(name, {})
    provider_type = provider_cfg.get("type", name)

    if provider_type == "openai":
        return OpenAIProvider(model=provider_cfg.get("model", "gpt-4o-mini"))
    if provider_type == "groq":
        return GroqProvider(model=provider_cfg.get("model", "llama-3.3-70b-versatile"))
    if provider_type == "ollama":
        return OllamaProvider(
            model=provider_cfg.get("model", "llama3.2"),
            timeout=float(provider_cfg.get("timeout_seconds", 120)),
        )
    if provider_type == "mock":
        return MockProvider()
    raise ValueError(f"Unknown LLM provider: {name}")


def select_extraction_provider(choice: str, config: dict[str, Any]) -> ExtractionProvider | None:
    """Resolve a provider choice to an available extraction provider, or None."""
    candidates = AUTO_ORDER if choice == "auto" else (choice,)
    for name in candidates:
        provider = LLMExtractionProvider(build_llm(name, config), name=name)
        if provider.is_available():
            logger.info("Using %s extraction provider", name)
            return provider
        logger.info("Extraction provider %s not available", name)
    return None
