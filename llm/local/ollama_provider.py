"""Ollama provider adapter."""

from __future__ import annotations

import logging
import shutil
import subprocess
from typing import Any

from llm.base_llm import BaseLLM

logger = logging.getLogger("ame.llm.ollama")


class OllamaProvider(BaseLLM):
    """Runs a local model through the ``ollama`` binary."""

    name = "ollama"

    def __init__(self, model: str = "llama3.2", timeout: float = 120.0) -> None:
        self.model = model
        self.timeout = timeout

    def is_available(self) -> bool:
        if shutil.which("ollama") is None:
            return False
        try:
            subprocess.run(
                ["ollama", "--version"],
                check=True,
                capture_output=True,
                text=True,
                timeout=10,
            )
        except (OSError, subprocess.SubprocessError):
            return False
        return True

    @staticmethod
    def _prompt(messages: list[dict[str, str]]) -> str:
        blocks = []
        for message in messages:
            role = message.get("role", "user")
            content = message.get("content", "")
            blocks.append(content if role == "user" else f"[{role.upper()}]\n{content}")
        return "\n\n".join(blocks)

    def chat(self, messages: list[dict[str, str]], **kwargs: Any) -> str:
        _ = kwargs
        if not self.is_available():
            return "Ollama unavailable: binary not found."
        try:
            proc = subprocess.run(
                ["ollama", "run", self.model],
                input=self._prompt(messages),
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            logger.warning("Ollama call failed: %s", exc)
            return f"Ollama call failed gracefully: {exc}"
        return proc.stdout.strip()
