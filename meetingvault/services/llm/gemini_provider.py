"""Gemini LLM provider using Google's Generative AI API."""
from __future__ import annotations

import time

import requests

from meetingvault.services.llm.base import (
    BaseLLMProvider,
    LLMHttpError,
    LLMProviderError,
    MissingAPIKeyError,
)


class GeminiProvider(BaseLLMProvider):
    """LLM provider for Google Gemini models."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-3-flash-preview",
        base_url: str = "https://generativelanguage.googleapis.com",
    ) -> None:
        super().__init__(logger_name="meetingvault.llm.gemini")
        self._api_key = (api_key or "").strip()
        self._model = model
        self._base_url = base_url.rstrip("/")

    @property
    def model(self) -> str:
        return self._model

    def _call_api(self, prompt: str, temperature: float = 0.2, timeout: int = 120) -> str:
        """Make a call to the Gemini API and return the response text."""
        if not self._api_key:
            raise MissingAPIKeyError("Gemini")

        # Handle model name format (may include "models/" prefix)
        model_name = self._model
        if not model_name.startswith("models/"):
            model_name = f"models/{model_name}"

        url = f"{self._base_url}/v1beta/{model_name}:generateContent"
        start_time = time.perf_counter()
        try:
            response = requests.post(
                url,
                params={"key": self._api_key},
                headers={"Content-Type": "application/json"},
                json={
                    "contents": [{"role": "user", "parts": [{"text": prompt}]}],
                    "generationConfig": {"temperature": temperature},
                },
                timeout=timeout,
            )
        except requests.RequestException as exc:
            self._logger.warning("Gemini request failed: %s", exc)
            raise LLMHttpError(-1, str(exc), provider="Gemini") from exc

        if not 200 <= response.status_code < 300:
            self._logger.error("Gemini error: %s - %s", response.status_code, response.text[:500])
            raise LLMHttpError(response.status_code, response.text, provider="Gemini")

        try:
            data = response.json()
        except ValueError as exc:
            raise LLMProviderError("Gemini response is not JSON") from exc

        candidates = data.get("candidates") or []
        if not candidates:
            raise LLMProviderError("Gemini response missing candidates")

        parts = (candidates[0].get("content") or {}).get("parts") or []
        if not parts or not isinstance(parts[0].get("text"), str):
            raise LLMProviderError("Gemini response missing text")

        self._logger.info(
            "Gemini call complete: model=%s duration=%.2fs chars=%s",
            self._model,
            time.perf_counter() - start_time,
            len(parts[0]["text"]),
        )
        return parts[0]["text"]
