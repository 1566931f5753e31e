"""Append-only JSONL journal of recording and pipeline events."""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import IO, Optional

_logger = logging.getLogger("meetingvault.events")


class EventLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


@dataclass(frozen=True)
class Event:
    level: EventLevel
    type: str
    data: dict[str, str] = field(default_factory=dict)
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def info(cls, type: str, data: Optional[dict] = None) -> "Event":
        return cls(level=EventLevel.INFO, type=type, data=_stringify(data))

    @classmethod
    def warn(cls, type: str, data: Optional[dict] = None) -> "Event":
        return cls(level=EventLevel.WARN, type=type, data=_stringify(data))

    @classmethod
    def error(cls, type: str, data: Optional[dict] = None) -> "Event":
        return cls(level=EventLevel.ERROR, type=type, data=_stringify(data))

    def to_dict(self) -> dict:
        return {
            "at": self.at.isoformat(),
            "level": self.level.value,
            "type": self.type,
            "data": dict(self.data),
        }


def _stringify(data: Optional[dict]) -> dict[str, str]:
    if not data:
        return {}
    return {str(key): str(value) for key, value in data.items()}


class EventLog:
    """Best-effort journal bound to one file for a session's lifetime.

    ``log`` never raises: a failing journal must not abort the recording or
    pipeline stage it is observing.
    """

    def __init__(self, path: str) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._handle: Optional[IO[str]] = open(path, "a", encoding="utf-8")

    @property
    def path(self) -> str:
        return self._path

    def log(self, event: Event) -> None:
        try:
            line = json.dumps(event.to_dict(), ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            _logger.warning("Event not serializable: type=%s error=%s", event.type, exc)
            return
        with self._lock:
            if self._handle is None:
                return
            try:
                self._handle.write(line + "\n")
                self._handle.flush()
                os.fsync(self._handle.fileno())
            except (OSError, ValueError) as exc:
                _logger.warning("Event log write failed: path=%s error=%s", self._path, exc)

    def close(self) -> None:
        with self._lock:
            if self._handle is None:
                return
            try:
                self._handle.close()
            except OSError as exc:
                _logger.warning("Event log close failed: path=%s error=%s", self._path, exc)
            self._handle = None

    def __enter__(self) -> "EventLog":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def read_events(path: str) -> list[dict]:
    if not os.path.exists(path):
        return []
    events: list[dict] = []
    with open(path, "r", encoding="utf-8") as handle:
        for line in handle:
            line = line.strip()
            if not line:
                continue
            try:
                events.append(json.loads(line))
            except json.JSONDecodeError:
                _logger.warning("Skipping malformed event line in %s", path)
    return events
