"""Post-recording pipeline: transcribe, summarize, persist and optionally export.

Each stage reads what the previous one persisted, so a failure at any point
leaves the earlier artifacts on disk and the session can be re-run with
``resummarize`` once the cause is fixed.
"""
from __future__ import annotations

import asyncio
import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional, Protocol

import soundfile as sf

from meetingvault.config import AppConfig
from meetingvault.services.event_log import Event, EventLog
from meetingvault.services.llm import (
    GeminiProvider,
    LLMHttpError,
    LLMProvider,
    LLMProviderError,
    MissingAPIKeyError,
)
from meetingvault.services.notes import MeetingNotes, write_notes
from meetingvault.services.notes_markdown import write_markdown
from meetingvault.services.notion_export import (
    MissingNotionTokenError,
    NotionClient,
    NotionExportError,
    NotionHttpError,
    NotionRateLimitedError,
)
from meetingvault.services.session import RecordingSession
from meetingvault.services.summarization import (
    InvalidNotesSchemaError,
    NoStructuredOutputError,
    SummarizationService,
)
from meetingvault.services.transcription import (
    MissingBinaryError,
    MissingModelError,
    OutputDecodingError,
    ProcessFailedError,
    Transcript,
    TranscriptSegment,
    TranscriptionProvider,
    TranscriptionProviderError,
    WhisperCppProvider,
    read_transcript_text,
    write_transcript,
)

_logger = logging.getLogger("meetingvault.pipeline")


class PipelineStage(str, Enum):
    TRANSCRIBING = "transcribing"
    SUMMARIZING = "summarizing"
    PERSISTING = "persisting"
    EXPORTING = "exporting"
    DONE = "done"
    FAILED = "failed"


class PipelineErrorKind(str, Enum):
    MISSING_CONFIG = "missing_config"
    MISSING_BINARY = "missing_binary"
    MISSING_MODEL = "missing_model"
    PROCESS_FAILED = "process_failed"
    OUTPUT_DECODING_FAILED = "output_decoding_failed"
    MISSING_API_KEY = "missing_api_key"
    HTTP_ERROR = "http_error"
    RESTRICTED_RESOURCE = "restricted_resource"
    RATE_LIMITED = "rate_limited"
    NO_STRUCTURED_OUTPUT = "no_structured_output"
    INVALID_NOTES_SCHEMA = "invalid_notes_schema"
    IO_ERROR = "io_error"
    BUSY = "busy"


_REMEDIATIONS = {
    PipelineErrorKind.MISSING_CONFIG: "Fill in the missing value in config.json (or the matching environment variable).",
    PipelineErrorKind.MISSING_BINARY: "Install whisper-cpp and check config.json's whisperBinary.",
    PipelineErrorKind.MISSING_MODEL: "Download a ggml model and check config.json's whisperModelPath.",
    PipelineErrorKind.PROCESS_FAILED: "Check the whisper-cli stderr above; the model or audio file may be unsupported.",
    PipelineErrorKind.OUTPUT_DECODING_FAILED: "whisper-cli printed non UTF-8 output; try another model or whisperLanguage.",
    PipelineErrorKind.MISSING_API_KEY: "Set config.json's geminiApiKey (or GEMINI_API_KEY).",
    PipelineErrorKind.HTTP_ERROR: "The remote service rejected the request; check credentials and retry with resummarize.",
    PipelineErrorKind.RESTRICTED_RESOURCE: "Share the Notion database with your integration, then retry with resummarize.",
    PipelineErrorKind.RATE_LIMITED: "Notion is rate limiting requests; wait a minute and retry with resummarize.",
    PipelineErrorKind.NO_STRUCTURED_OUTPUT: "The model did not return JSON; retry with resummarize.",
    PipelineErrorKind.INVALID_NOTES_SCHEMA: "The model JSON did not match the notes schema; retry with resummarize.",
    PipelineErrorKind.IO_ERROR: "Check that the session directory exists and is writable.",
    PipelineErrorKind.BUSY: "Wait for the running pipeline on this session to finish.",
}


class PipelineError(RuntimeError):
    def __init__(
        self,
        kind: PipelineErrorKind,
        message: str,
        remediation: Optional[str] = None,
        stage: Optional[PipelineStage] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.remediation = remediation or _REMEDIATIONS[kind]
        self.stage = stage

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "remediation": self.remediation,
            "stage": self.stage.value if self.stage else None,
        }


@dataclass
class PipelineResult:
    meeting_id: str
    transcript_text: str
    notes: MeetingNotes
    notes_path: str
    markdown_path: str
    notion_page_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "meeting_id": self.meeting_id,
            "notes": self.notes.model_dump(by_alias=True, exclude_none=True),
            "notes_path": self.notes_path,
            "markdown_path": self.markdown_path,
            "notion_page_id": self.notion_page_id,
        }


class NotesExporter(Protocol):
    def publish(self, notes: MeetingNotes, database_id: str, title: str) -> str: ...


_active_sessions: set[str] = set()
_active_lock = threading.Lock()


@contextmanager
def _claim_session(meeting_id: str) -> Iterator[None]:
    with _active_lock:
        if meeting_id in _active_sessions:
            raise PipelineError(
                PipelineErrorKind.BUSY, f"Pipeline already running for session {meeting_id}"
            )
        _active_sessions.add(meeting_id)
    try:
        yield
    finally:
        with _active_lock:
            _active_sessions.discard(meeting_id)


def is_session_busy(meeting_id: str) -> bool:
    with _active_lock:
        return meeting_id in _active_sessions


def classify_error(exc: BaseException) -> tuple[PipelineErrorKind, str]:
    """Map an adapter exception onto a pipeline error kind and message."""
    if isinstance(exc, MissingModelError):
        return PipelineErrorKind.MISSING_MODEL, str(exc)
    if isinstance(exc, MissingBinaryError):
        return PipelineErrorKind.MISSING_BINARY, str(exc)
    if isinstance(exc, ProcessFailedError):
        return PipelineErrorKind.PROCESS_FAILED, str(exc)
    if isinstance(exc, OutputDecodingError):
        return PipelineErrorKind.OUTPUT_DECODING_FAILED, str(exc)
    if isinstance(exc, TranscriptionProviderError):
        return PipelineErrorKind.PROCESS_FAILED, str(exc)
    if isinstance(exc, MissingAPIKeyError):
        return PipelineErrorKind.MISSING_API_KEY, str(exc)
    if isinstance(exc, NoStructuredOutputError):
        return PipelineErrorKind.NO_STRUCTURED_OUTPUT, str(exc)
    if isinstance(exc, InvalidNotesSchemaError):
        return PipelineErrorKind.INVALID_NOTES_SCHEMA, str(exc)
    if isinstance(exc, LLMHttpError):
        return PipelineErrorKind.HTTP_ERROR, str(exc)
    if isinstance(exc, LLMProviderError):
        return PipelineErrorKind.NO_STRUCTURED_OUTPUT, str(exc)
    if isinstance(exc, MissingNotionTokenError):
        return PipelineErrorKind.MISSING_CONFIG, "Missing config.notionToken"
    if isinstance(exc, NotionRateLimitedError):
        return PipelineErrorKind.RATE_LIMITED, str(exc)
    if isinstance(exc, NotionHttpError):
        if exc.is_restricted:
            return PipelineErrorKind.RESTRICTED_RESOURCE, str(exc)
        return PipelineErrorKind.HTTP_ERROR, str(exc)
    if isinstance(exc, NotionExportError):
        return PipelineErrorKind.HTTP_ERROR, str(exc)
    if isinstance(exc, OSError):
        return PipelineErrorKind.IO_ERROR, str(exc)
    raise TypeError(f"Unclassified pipeline error: {exc!r}")


_HANDLED_ERRORS = (TranscriptionProviderError, LLMProviderError, NotionExportError, OSError)


def _strip(value: Optional[str]) -> str:
    return (value or "").strip()


def transcribe_session_audio(transcriber: TranscriptionProvider, session: RecordingSession) -> Transcript:
    """Transcribe the continuous file, or every chunk in order when capture ran chunk-only.

    Chunk segments are shifted by the duration of the chunks before them so
    timestamps stay relative to the start of the recording.
    """
    if os.path.exists(session.audio_full):
        return transcriber.transcribe(session.audio_full)

    chunks = session.list_chunks()
    if not chunks:
        raise FileNotFoundError(f"No audio recorded for session {session.meeting_id}")

    segments: list[TranscriptSegment] = []
    offset_ms = 0
    for chunk_path in chunks:
        info = sf.info(chunk_path)
        if info.frames == 0:
            continue
        for segment in transcriber.transcribe(chunk_path).segments:
            segments.append(
                TranscriptSegment(
                    start_ms=segment.start_ms + offset_ms,
                    end_ms=segment.end_ms + offset_ms,
                    text=segment.text,
                )
            )
        offset_ms += int(round(info.frames * 1000 / info.samplerate))
    return Transcript(segments=segments)


class MeetingPipeline:
    """Runs the offline stages for one session at a time.

    Adapters default to the ones described by ``config``; tests and callers
    can inject their own ``transcriber``, ``llm_provider`` or ``exporter``.
    Blocking work runs in worker threads so the event loop stays responsive.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        transcriber: Optional[TranscriptionProvider] = None,
        llm_provider: Optional[LLMProvider] = None,
        exporter: Optional[NotesExporter] = None,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self._config = config
        self._transcriber = transcriber
        self._llm_provider = llm_provider
        self._exporter = exporter
        self._event_log = event_log

    async def process(self, session: RecordingSession) -> PipelineResult:
        return await self._run(session, transcribe=True)

    async def resummarize(self, session: RecordingSession) -> PipelineResult:
        """Summarize the persisted transcript again without touching it."""
        return await self._run(session, transcribe=False)

    async def _run(self, session: RecordingSession, *, transcribe: bool) -> PipelineResult:
        with _claim_session(session.meeting_id):
            events = self._event_log or EventLog(session.event_log)
            try:
                return await self._run_stages(session, events, transcribe=transcribe)
            finally:
                if events is not self._event_log:
                    events.close()

    async def _run_stages(
        self, session: RecordingSession, events: EventLog, *, transcribe: bool
    ) -> PipelineResult:
        mode = "process" if transcribe else "resummarize"
        _logger.info("Pipeline started: meeting_id=%s mode=%s", session.meeting_id, mode)
        events.log(Event.info("pipeline_started", {"mode": mode}))
        stage: Optional[PipelineStage] = None
        try:
            if transcribe:
                transcriber = self._build_transcriber()
                stage = self._enter_stage(events, session, PipelineStage.TRANSCRIBING)
                transcript = await asyncio.to_thread(transcribe_session_audio, transcriber, session)
                await asyncio.to_thread(
                    write_transcript, transcript, session.transcript_text, session.transcript_segments
                )
                events.log(
                    Event.info(
                        "transcript_written",
                        {"path": session.transcript_text, "segments": len(transcript.segments)},
                    )
                )
                transcript_text = transcript.text
            else:
                transcript_text = await asyncio.to_thread(read_transcript_text, session.transcript_text)

            # Adapters for later stages are built only once the earlier
            # artifacts are on disk.
            stage = self._enter_stage(events, session, PipelineStage.SUMMARIZING)
            summarizer = SummarizationService(self._build_llm_provider())
            notes = await asyncio.to_thread(summarizer.summarize, transcript_text)

            stage = self._enter_stage(events, session, PipelineStage.PERSISTING)
            await asyncio.to_thread(write_notes, notes, session.notes_json)
            await asyncio.to_thread(write_markdown, session.meeting_id, notes, session.notes_markdown)
            events.log(
                Event.info("notes_written", {"json": session.notes_json, "markdown": session.notes_markdown})
            )

            page_id = None
            if self._config.export_to_notion:
                stage = self._enter_stage(events, session, PipelineStage.EXPORTING)
                exporter, database_id = self._build_exporter()
                page_id = await asyncio.to_thread(
                    exporter.publish, notes, database_id, notes.display_title()
                )
                events.log(Event.info("notes_exported", {"page_id": page_id}))
        except PipelineError as exc:
            exc.stage = exc.stage or stage
            self._record_failure(events, session, exc)
            raise
        except _HANDLED_ERRORS as exc:
            kind, message = classify_error(exc)
            error = PipelineError(kind, message, stage=stage)
            self._record_failure(events, session, error)
            raise error from exc
        except Exception as exc:
            _logger.exception("Pipeline crashed: meeting_id=%s stage=%s", session.meeting_id, stage)
            events.log(Event.error("pipeline_failed", {"error": repr(exc), "kind": "unexpected"}))
            raise

        self._enter_stage(events, session, PipelineStage.DONE)
        events.log(Event.info("pipeline_finished", {"page_id": page_id} if page_id else None))
        _logger.info("Pipeline finished: meeting_id=%s page_id=%s", session.meeting_id, page_id)
        return PipelineResult(
            meeting_id=session.meeting_id,
            transcript_text=transcript_text,
            notes=notes,
            notes_path=session.notes_json,
            markdown_path=session.notes_markdown,
            notion_page_id=page_id,
        )

    def _enter_stage(
        self, events: EventLog, session: RecordingSession, stage: PipelineStage
    ) -> PipelineStage:
        _logger.info("Pipeline stage: meeting_id=%s stage=%s", session.meeting_id, stage.value)
        events.log(Event.info("pipeline_stage", {"stage": stage.value}))
        return stage

    def _record_failure(self, events: EventLog, session: RecordingSession, error: PipelineError) -> None:
        _logger.warning(
            "Pipeline failed: meeting_id=%s stage=%s kind=%s error=%s",
            session.meeting_id,
            error.stage.value if error.stage else None,
            error.kind.value,
            error.message,
        )
        events.log(Event.error("pipeline_failed", {"error": error.message, "kind": error.kind.value}))

    def _build_transcriber(self) -> TranscriptionProvider:
        if self._transcriber is not None:
            return self._transcriber
        model_path = _strip(self._config.whisper_model_path)
        if not model_path:
            raise PipelineError(
                PipelineErrorKind.MISSING_CONFIG,
                "Missing config.whisperModelPath (install whisper-cpp and set a ggml model path)",
            )
        return WhisperCppProvider(
            model_path=model_path,
            binary=self._config.resolved_whisper_binary(),
            language=_strip(self._config.whisper_language) or None,
        )

    def _build_llm_provider(self) -> LLMProvider:
        if self._llm_provider is not None:
            return self._llm_provider
        api_key = _strip(self._config.gemini_api_key)
        if not api_key:
            raise PipelineError(PipelineErrorKind.MISSING_CONFIG, "Missing config.geminiApiKey")
        return GeminiProvider(api_key=api_key, model=self._config.resolved_gemini_model())

    def _build_exporter(self) -> tuple[NotesExporter, str]:
        database_id = _strip(self._config.notion_database_id)
        if self._exporter is not None:
            exporter = self._exporter
        else:
            token = _strip(self._config.notion_token)
            if not token:
                raise PipelineError(PipelineErrorKind.MISSING_CONFIG, "Missing config.notionToken")
            exporter = NotionClient(token=token)
        if not database_id:
            raise PipelineError(PipelineErrorKind.MISSING_CONFIG, "Missing config.notionDatabaseId")
        return exporter, database_id
