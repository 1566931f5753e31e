"""Transcript persistence: plain text plus one JSON segment per line."""

from __future__ import annotations

import json
import os

from meetingvault.services.transcription.base import Transcript, TranscriptSegment


def write_transcript(transcript: Transcript, text_path: str, segments_path: str) -> None:
    with open(text_path, "w", encoding="utf-8") as handle:
        handle.write(transcript.text)
        handle.flush()
        os.fsync(handle.fileno())

    with open(segments_path, "w", encoding="utf-8") as handle:
        for segment in transcript.segments:
            handle.write(json.dumps(segment.to_dict(), ensure_ascii=False) + "\n")
        handle.flush()
        os.fsync(handle.fileno())


def read_transcript(segments_path: str) -> Transcript:
    segments: list[TranscriptSegment] = []
    with open(segments_path, "r", encoding="utf-8") as handle:
        for line in handle:
            line = line.strip()
            if not line:
                continue
            segments.append(TranscriptSegment.from_dict(json.loads(line)))
    return Transcript(segments=segments)


def read_transcript_text(text_path: str) -> str:
    with open(text_path, "r", encoding="utf-8") as handle:
        return handle.read()
