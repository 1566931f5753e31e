"""Configuration handling.

The config lives in ``<data_dir>/config.json`` with camelCase keys, e.g.::

    {
      "whisperModelPath": "/models/ggml-large-v3.bin",
      "geminiApiKey": "...",
      "notionToken": "...",
      "notionDatabaseId": "...",
      "exportToNotion": true
    }

Environment variables (``MEETINGVAULT_*``) override file values so secrets
can stay out of the file.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_WHISPER_BINARY = "whisper-cli"
DEFAULT_GEMINI_MODEL = "gemini-3-flash-preview"
DEFAULT_SEGMENT_SECONDS = 30.0

_logger = logging.getLogger("meetingvault.config")


@dataclass
class AppConfig:
    whisper_binary: Optional[str] = None
    whisper_model_path: Optional[str] = None
    whisper_language: Optional[str] = None
    gemini_api_key: Optional[str] = None
    gemini_model: Optional[str] = None
    notion_token: Optional[str] = None
    notion_database_id: Optional[str] = None
    export_to_notion: bool = False
    segment_seconds: float = DEFAULT_SEGMENT_SECONDS
    record_full_file: bool = True
    input_device: Optional[str] = None

    def resolved_whisper_binary(self) -> str:
        return _clean(self.whisper_binary) or DEFAULT_WHISPER_BINARY

    def resolved_gemini_model(self) -> str:
        return _clean(self.gemini_model) or DEFAULT_GEMINI_MODEL


# dataclass field -> config.json key
_JSON_KEYS = {
    "whisper_binary": "whisperBinary",
    "whisper_model_path": "whisperModelPath",
    "whisper_language": "whisperLanguage",
    "gemini_api_key": "geminiApiKey",
    "gemini_model": "geminiModel",
    "notion_token": "notionToken",
    "notion_database_id": "notionDatabaseId",
    "export_to_notion": "exportToNotion",
    "segment_seconds": "segmentSeconds",
    "record_full_file": "recordFullFile",
    "input_device": "inputDevice",
}

# dataclass field -> environment variables, first match wins
_ENV_OVERRIDES = {
    "whisper_binary": ("MEETINGVAULT_WHISPER_BIN",),
    "whisper_model_path": ("MEETINGVAULT_WHISPER_MODEL",),
    "whisper_language": ("MEETINGVAULT_WHISPER_LANGUAGE",),
    "gemini_api_key": ("MEETINGVAULT_GEMINI_API_KEY", "GEMINI_API_KEY"),
    "gemini_model": ("MEETINGVAULT_GEMINI_MODEL",),
    "notion_token": ("MEETINGVAULT_NOTION_TOKEN", "NOTION_TOKEN"),
    "notion_database_id": ("MEETINGVAULT_NOTION_DATABASE_ID", "NOTION_DATABASE_ID"),
}


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


def _coerce_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def config_from_dict(data: Mapping) -> AppConfig:
    kwargs = {}
    for name, key in _JSON_KEYS.items():
        if key in data and data[key] is not None:
            kwargs[name] = data[key]
    if "export_to_notion" in kwargs:
        kwargs["export_to_notion"] = _coerce_bool(kwargs["export_to_notion"])
    if "record_full_file" in kwargs:
        kwargs["record_full_file"] = _coerce_bool(kwargs["record_full_file"])
    if "segment_seconds" in kwargs:
        seconds = float(kwargs["segment_seconds"])
        if seconds <= 0:
            raise ValueError("segmentSeconds must be > 0")
        kwargs["segment_seconds"] = seconds
    return AppConfig(**kwargs)


def apply_env_overrides(config: AppConfig, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    env = os.environ if environ is None else environ
    for name, keys in _ENV_OVERRIDES.items():
        for key in keys:
            value = env.get(key)
            if value:
                setattr(config, name, value)
                break
    return config


def load_config(path: str, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    data: dict = {}
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle) or {}
        _logger.info("Config loaded: path=%s keys=%s", path, sorted(data.keys()))
    else:
        _logger.info("Config missing, using defaults: path=%s", path)
    return apply_env_overrides(config_from_dict(data), environ)
