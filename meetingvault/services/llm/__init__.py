from meetingvault.services.llm.base import (
    LLMHttpError,
    LLMProvider,
    LLMProviderError,
    MissingAPIKeyError,
)
from meetingvault.services.llm.gemini_provider import GeminiProvider
from meetingvault.services.llm.json_extract import extract_first_json_object

__all__ = [
    "LLMHttpError",
    "LLMProvider",
    "LLMProviderError",
    "MissingAPIKeyError",
    "GeminiProvider",
    "extract_first_json_object",
]
