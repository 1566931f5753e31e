import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from meetingvault.config import AppConfig
from meetingvault.context import AppContext
from meetingvault.services.audio_capture import ChunkedMicRecorder, RecorderIssue, StreamFactory
from meetingvault.services.event_log import Event, EventLog
from meetingvault.services.session import RecordingSession


class RecordingStateError(RuntimeError):
    pass


@dataclass
class RecordingState:
    session: Optional[RecordingSession] = None
    recorder: Optional[ChunkedMicRecorder] = None
    event_log: Optional[EventLog] = None
    started_at: Optional[datetime] = None
    last_issue: Optional[RecorderIssue] = None


def _parse_device(value: Optional[str]) -> Optional[Any]:
    value = (value or "").strip()
    if not value:
        return None
    return int(value) if value.isascii() and value.isdigit() else value


class RecordingManager:
    """Owns the single active recording of this process."""

    def __init__(
        self,
        ctx: AppContext,
        config: AppConfig,
        stream_factory: Optional[StreamFactory] = None,
    ) -> None:
        self._ctx = ctx
        self._config = config
        self._stream_factory = stream_factory
        self._lock = threading.Lock()
        self._state = RecordingState()
        self._logger = logging.getLogger("meetingvault.recording")

    def is_recording(self) -> bool:
        with self._lock:
            return self._state.recorder is not None

    def start(self, device: Optional[str] = None) -> dict:
        with self._lock:
            if self._state.recorder is not None:
                raise RecordingStateError("Recording already in progress")

            session = RecordingSession.create(self._ctx.data_dir)
            event_log = EventLog(session.event_log)
            state = RecordingState(session=session, event_log=event_log)
            recorder = ChunkedMicRecorder(
                output_directory=session.audio_chunks,
                full_file_path=session.audio_full if self._config.record_full_file else None,
                segment_seconds=self._config.segment_seconds,
                device=_parse_device(device if device is not None else self._config.input_device),
                on_event=event_log.log,
                on_issue=self._issue_handler(state),
                stream_factory=self._stream_factory,
            )
            try:
                recorder.start()
            except Exception:
                event_log.close()
                raise

            state.recorder = recorder
            state.started_at = datetime.now(timezone.utc)
            self._state = state
            self._logger.info("Recording started: meeting_id=%s root=%s", session.meeting_id, session.root)
            return self._status_locked()

    def stop(self) -> dict:
        with self._lock:
            state = self._state
            if state.recorder is None or state.session is None:
                raise RecordingStateError("No recording in progress")
            try:
                state.recorder.stop()
            finally:
                if state.event_log is not None:
                    state.event_log.close()
                self._state = RecordingState()

            self._logger.info(
                "Recording stopped: meeting_id=%s frames=%s chunks=%s dropped=%s",
                state.session.meeting_id,
                state.recorder.frames_written,
                state.recorder.chunk_index,
                state.recorder.dropped_buffers,
            )
            return {
                "recording": False,
                "meeting_id": state.session.meeting_id,
                "root": state.session.root,
                "frames_written": state.recorder.frames_written,
                "chunks": state.recorder.chunk_index,
                "dropped_buffers": state.recorder.dropped_buffers,
                "duration_seconds": state.recorder.frames_written / 16000,
            }

    def status(self) -> dict:
        with self._lock:
            return self._status_locked()

    def _status_locked(self) -> dict:
        state = self._state
        if state.recorder is None or state.session is None:
            return {"recording": False, "meeting_id": None}
        issue = state.last_issue
        native = state.recorder.native_format
        return {
            "recording": state.recorder.is_recording,
            "meeting_id": state.session.meeting_id,
            "root": state.session.root,
            "started_at": state.started_at.isoformat() if state.started_at else None,
            "native_samplerate": native.sample_rate if native else None,
            "native_channels": native.channels if native else None,
            "chunk_index": state.recorder.chunk_index,
            "frames_written": state.recorder.frames_written,
            "dropped_buffers": state.recorder.dropped_buffers,
            "last_issue": {"kind": issue.kind.value, "message": issue.message} if issue else None,
        }

    def _issue_handler(self, state: RecordingState):
        def handle(issue: RecorderIssue) -> None:
            # Runs on the writer/watchdog threads; never take self._lock here,
            # stop() holds it while joining those threads.
            state.last_issue = issue
            state.event_log.log(Event.warn(issue.kind.value, {"message": issue.message}))

        return handle
