from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class TranscriptSegment:
    start_ms: int
    end_ms: int
    text: str

    def to_dict(self) -> dict:
        return {"startMs": self.start_ms, "endMs": self.end_ms, "text": self.text}

    @classmethod
    def from_dict(cls, data: dict) -> "TranscriptSegment":
        return cls(
            start_ms=int(data["startMs"]),
            end_ms=int(data["endMs"]),
            text=str(data["text"]),
        )


@dataclass(frozen=True)
class Transcript:
    segments: list[TranscriptSegment] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(segment.text for segment in self.segments)


class TranscriptionProvider(ABC):
    @abstractmethod
    def transcribe(self, audio_path: str) -> Transcript:
        raise NotImplementedError


class TranscriptionProviderError(RuntimeError):
    pass


class MissingModelError(TranscriptionProviderError):
    def __init__(self, model_path: str) -> None:
        super().__init__(f"Whisper model file not found: {model_path}")
        self.model_path = model_path


class MissingBinaryError(TranscriptionProviderError):
    def __init__(self, binary: str) -> None:
        super().__init__(f"whisper-cli not found: {binary}")
        self.binary = binary


class ProcessFailedError(TranscriptionProviderError):
    def __init__(self, exit_code: int, stderr: str) -> None:
        super().__init__(f"whisper-cli failed (exit {exit_code}): {stderr.strip()}")
        self.exit_code = exit_code
        self.stderr = stderr


class OutputDecodingError(TranscriptionProviderError):
    def __init__(self) -> None:
        super().__init__("Failed to decode whisper-cli output")
