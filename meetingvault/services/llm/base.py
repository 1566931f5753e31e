from __future__ import annotations

import logging
from abc import ABC, abstractmethod


class LLMProviderError(RuntimeError):
    pass


class MissingAPIKeyError(LLMProviderError):
    def __init__(self, provider: str = "Gemini") -> None:
        super().__init__(f"Missing {provider} API key")


class LLMHttpError(LLMProviderError):
    """Non-2xx response, or ``status == -1`` when the request never got a response."""

    def __init__(self, status: int, body: str, provider: str = "Gemini") -> None:
        super().__init__(f"{provider} HTTP {status}: {body}")
        self.status = status
        self.body = body


class LLMProvider(ABC):
    @abstractmethod
    def generate(self, prompt: str) -> str:
        """Send a prompt and return the raw response text."""
        raise NotImplementedError


class BaseLLMProvider(LLMProvider):
    """Subclasses only need to implement ``_call_api`` for their HTTP API."""

    def __init__(self, logger_name: str = "meetingvault.llm") -> None:
        self._logger = logging.getLogger(logger_name)

    @abstractmethod
    def _call_api(self, prompt: str, temperature: float = 0.2, timeout: int = 120) -> str:
        raise NotImplementedError

    def generate(self, prompt: str) -> str:
        return self._call_api(prompt, temperature=0.2, timeout=120)
