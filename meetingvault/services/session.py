"""Per-recording directory layout."""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass


class SessionCreateError(OSError):
    pass


@dataclass(frozen=True)
class RecordingSession:
    meeting_id: str
    root: str
    audio_root: str
    audio_chunks: str
    audio_full: str
    events_root: str
    event_log: str
    transcript_root: str
    transcript_text: str
    transcript_segments: str
    notes_root: str
    notes_json: str
    notes_markdown: str

    @classmethod
    def layout(cls, base_output: str, meeting_id: str) -> "RecordingSession":
        """Derive every path for ``meeting_id`` under ``base_output`` without touching disk."""
        root = os.path.join(base_output, "meetings", meeting_id)
        audio_root = os.path.join(root, "audio")
        events_root = os.path.join(root, "events")
        transcript_root = os.path.join(root, "transcript")
        notes_root = os.path.join(root, "notes")
        return cls(
            meeting_id=meeting_id,
            root=root,
            audio_root=audio_root,
            audio_chunks=os.path.join(audio_root, "chunks"),
            audio_full=os.path.join(audio_root, "full.wav"),
            events_root=events_root,
            event_log=os.path.join(events_root, "events.jsonl"),
            transcript_root=transcript_root,
            transcript_text=os.path.join(transcript_root, "transcript.txt"),
            transcript_segments=os.path.join(transcript_root, "segments.jsonl"),
            notes_root=notes_root,
            notes_json=os.path.join(notes_root, "meeting_notes.json"),
            notes_markdown=os.path.join(notes_root, "meeting_notes.md"),
        )

    @classmethod
    def create(cls, base_output: str) -> "RecordingSession":
        """Allocate a fresh meeting id and create its directory tree.

        Every directory a later writer needs is created here, so the capture
        engine and the pipeline never have to create directories themselves.
        """
        session = cls.layout(base_output, str(uuid.uuid4()))
        try:
            for path in (
                session.audio_chunks,
                session.events_root,
                session.transcript_root,
                session.notes_root,
            ):
                os.makedirs(path, exist_ok=True)
        except OSError as exc:
            raise SessionCreateError(
                f"Failed to create session directories under {session.root}: {exc}"
            ) from exc
        return session

    @classmethod
    def open(cls, base_output: str, meeting_id: str) -> "RecordingSession":
        """Re-derive the layout of an existing session (e.g. to reprocess it)."""
        session = cls.layout(base_output, meeting_id)
        if not os.path.isdir(session.root):
            raise FileNotFoundError(f"Session not found: {meeting_id}")
        return session

    def chunk_path(self, index: int) -> str:
        return os.path.join(self.audio_chunks, f"{index:06d}.wav")

    def list_chunks(self) -> list[str]:
        try:
            names = os.listdir(self.audio_chunks)
        except OSError:
            return []
        return sorted(
            os.path.join(self.audio_chunks, name) for name in names if name.endswith(".wav")
        )
