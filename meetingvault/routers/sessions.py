import logging
import os
import re
import time
from typing import Callable

from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from meetingvault.context import AppContext
from meetingvault.services.event_log import read_events
from meetingvault.services.notes import load_notes
from meetingvault.services.pipeline import MeetingPipeline, PipelineError, PipelineErrorKind
from meetingvault.services.recording_manager import RecordingManager
from meetingvault.services.session import RecordingSession

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9-]*$")

_USER_FIXABLE = {
    PipelineErrorKind.MISSING_CONFIG,
    PipelineErrorKind.MISSING_BINARY,
    PipelineErrorKind.MISSING_MODEL,
    PipelineErrorKind.MISSING_API_KEY,
    PipelineErrorKind.IO_ERROR,
}


def pipeline_error_status(error: PipelineError) -> int:
    if error.kind == PipelineErrorKind.BUSY:
        return 409
    if error.kind in _USER_FIXABLE:
        return 400
    return 502


def create_sessions_router(
    ctx: AppContext,
    manager: RecordingManager,
    pipeline_factory: Callable[[], MeetingPipeline],
) -> APIRouter:
    router = APIRouter()
    logger = logging.getLogger("meetingvault.api.sessions")

    def open_session(meeting_id: str) -> RecordingSession:
        if not _SESSION_ID_RE.match(meeting_id):
            raise HTTPException(status_code=404, detail="Session not found")
        try:
            return RecordingSession.open(ctx.data_dir, meeting_id)
        except FileNotFoundError as exc:
            raise HTTPException(status_code=404, detail="Session not found") from exc

    def ensure_not_recording(meeting_id: str) -> None:
        if manager.status().get("meeting_id") == meeting_id:
            raise HTTPException(status_code=409, detail="Session is still recording")

    async def run(meeting_id: str, mode: str) -> dict:
        session = open_session(meeting_id)
        ensure_not_recording(meeting_id)
        pipeline = pipeline_factory()
        start_time = time.perf_counter()
        try:
            if mode == "process":
                result = await pipeline.process(session)
            else:
                result = await pipeline.resummarize(session)
        except PipelineError as exc:
            logger.warning("%s failed: meeting_id=%s kind=%s", mode, meeting_id, exc.kind.value)
            raise HTTPException(status_code=pipeline_error_status(exc), detail=exc.to_dict()) from exc
        logger.info(
            "%s completed in %.2f s: meeting_id=%s", mode, time.perf_counter() - start_time, meeting_id
        )
        return result.to_dict()

    @router.get("/api/sessions")
    def list_sessions() -> list[dict]:
        meetings_dir = ctx.meetings_dir
        if not os.path.isdir(meetings_dir):
            return []
        sessions = []
        for name in sorted(os.listdir(meetings_dir)):
            session = RecordingSession.layout(ctx.data_dir, name)
            if not os.path.isdir(session.root):
                continue
            sessions.append(
                {
                    "meeting_id": name,
                    "has_audio": os.path.exists(session.audio_full) or bool(session.list_chunks()),
                    "has_transcript": os.path.exists(session.transcript_text),
                    "has_notes": os.path.exists(session.notes_json),
                }
            )
        return sessions

    @router.post("/api/sessions/{meeting_id}/process")
    async def process_session(meeting_id: str) -> dict:
        return await run(meeting_id, "process")

    @router.post("/api/sessions/{meeting_id}/resummarize")
    async def resummarize_session(meeting_id: str) -> dict:
        return await run(meeting_id, "resummarize")

    @router.get("/api/sessions/{meeting_id}/events")
    def session_events(meeting_id: str) -> list[dict]:
        session = open_session(meeting_id)
        if not os.path.exists(session.event_log):
            return []
        return read_events(session.event_log)

    @router.get("/api/sessions/{meeting_id}/notes")
    def session_notes(meeting_id: str) -> dict:
        session = open_session(meeting_id)
        if not os.path.exists(session.notes_json):
            raise HTTPException(status_code=404, detail="Notes not generated yet")
        try:
            notes = load_notes(session.notes_json)
        except ValidationError as exc:
            raise HTTPException(status_code=500, detail="Stored notes are invalid") from exc
        return notes.model_dump(by_alias=True, exclude_none=True)

    return router
