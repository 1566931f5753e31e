"""Chunked microphone recorder.

The sounddevice callback runs on PortAudio's real-time thread. It only copies
the buffer and hands it to a bounded queue; a single writer thread converts
every buffer to the canonical format and writes it to the current chunk file
and the continuous file, in arrival order.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

import numpy as np
import soundfile as sf

from meetingvault.services.audio_convert import (
    CANONICAL_FORMAT,
    AudioConverter,
    AudioFormat,
    needs_conversion,
)
from meetingvault.services.event_log import Event

StreamFactory = Callable[[Callable[..., None]], "tuple[Any, AudioFormat]"]

_STOP = object()


class IssueKind(str, Enum):
    NO_AUDIO_FRAMES = "noAudioFrames"
    WRITE_ERROR = "writeError"
    CONVERT_ERROR = "convertError"


@dataclass(frozen=True)
class RecorderIssue:
    kind: IssueKind
    message: str


def list_input_devices() -> list[dict]:
    try:
        import sounddevice as sd
    except Exception as exc:  # pragma: no cover - environment-dependent
        raise RuntimeError("sounddevice is required for device detection.") from exc

    devices = sd.query_devices()
    return [
        {
            "index": idx,
            "name": device["name"],
            "max_input_channels": device["max_input_channels"],
            "default_samplerate": device["default_samplerate"],
        }
        for idx, device in enumerate(devices)
        if device["max_input_channels"] > 0
    ]


def open_sounddevice_stream(
    callback: Callable[..., None],
    device: Optional[Any] = None,
    blocksize: int = 1024,
) -> tuple[Any, AudioFormat]:
    """Open (but do not start) an input stream in the device's native format."""
    try:
        import sounddevice as sd
    except Exception as exc:  # pragma: no cover - environment-dependent
        raise RuntimeError("sounddevice is required for recording.") from exc

    try:
        info = sd.query_devices(device, "input")
    except Exception as exc:
        raise RuntimeError(f"Invalid audio input device: {device!r}") from exc

    max_channels = int(info.get("max_input_channels", 0))
    if max_channels < 1:
        raise RuntimeError("Selected device has no input channels")
    native = AudioFormat(
        sample_rate=int(info.get("default_samplerate", 48000)),
        channels=min(max_channels, 2),
        dtype="float32",
    )
    stream = sd.InputStream(
        device=device,
        samplerate=native.sample_rate,
        channels=native.channels,
        dtype=native.dtype,
        blocksize=blocksize,
        callback=callback,
    )
    return stream, native


def _open_wav(path: str) -> sf.SoundFile:
    return sf.SoundFile(
        path,
        mode="w",
        samplerate=CANONICAL_FORMAT.sample_rate,
        channels=CANONICAL_FORMAT.channels,
        format="WAV",
        subtype="PCM_16",
    )


class ChunkedMicRecorder:
    def __init__(
        self,
        output_directory: str,
        full_file_path: Optional[str],
        segment_seconds: float = 30.0,
        *,
        device: Optional[Any] = None,
        on_event: Optional[Callable[[Event], None]] = None,
        on_issue: Optional[Callable[[RecorderIssue], None]] = None,
        stream_factory: Optional[StreamFactory] = None,
        queue_size: int = 2048,
        watchdog_interval: float = 1.0,
        silence_threshold: float = 3.0,
    ) -> None:
        if segment_seconds <= 0:
            raise ValueError("segment_seconds must be > 0")
        self._output_directory = output_directory
        self._full_file_path = full_file_path
        self._segment_seconds = segment_seconds
        self._device = device
        self.on_event = on_event
        self.on_issue = on_issue
        self._stream_factory = stream_factory or (
            lambda callback: open_sounddevice_stream(callback, device=self._device)
        )
        self._queue_size = queue_size
        self._watchdog_interval = watchdog_interval
        self._silence_threshold = silence_threshold
        self._logger = logging.getLogger("meetingvault.audio")

        self._lock = threading.RLock()
        self._recording = False
        self._stream: Any = None
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=queue_size)
        self._writer_thread: Optional[threading.Thread] = None
        self._watchdog_thread: Optional[threading.Thread] = None
        self._watchdog_stop = threading.Event()

        self._native_format: Optional[AudioFormat] = None
        self._converter: Optional[AudioConverter] = None
        self._chunk_file: Optional[sf.SoundFile] = None
        self._full_file: Optional[sf.SoundFile] = None
        self._chunk_index = 0
        self._frames_in_chunk = 0
        self._chunk_frame_limit = 0
        self._frames_written = 0
        self._last_frame_at = 0.0

        # Touched by the real-time callback; plain ints only.
        self._overflow_count = 0
        self._status_count = 0
        self._overflow_reported = 0

    # ── Public state ───────────────────────────────────────────────────

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def native_format(self) -> Optional[AudioFormat]:
        return self._native_format

    @property
    def chunk_index(self) -> int:
        return self._chunk_index

    @property
    def chunk_frame_limit(self) -> int:
        return self._chunk_frame_limit

    @property
    def frames_written(self) -> int:
        return self._frames_written

    @property
    def dropped_buffers(self) -> int:
        return self._overflow_count

    # ── Lifecycle ──────────────────────────────────────────────────────

    def start(self) -> None:
        with self._lock:
            if self._recording:
                return

            self._emit_event(Event.info("recording_started"))
            stream = None
            try:
                stream, native = self._stream_factory(self._audio_callback)
                self._native_format = native
                self._converter = AudioConverter(native) if needs_conversion(native) else None
                self._chunk_frame_limit = max(
                    1, int(self._segment_seconds * CANONICAL_FORMAT.sample_rate)
                )
                self._logger.info(
                    "Recording start: native=%s canonical=%s converter=%s chunk_frames=%s",
                    native,
                    CANONICAL_FORMAT,
                    self._converter is not None,
                    self._chunk_frame_limit,
                )

                self._queue = queue.Queue(maxsize=self._queue_size)
                self._chunk_index = 0
                self._frames_in_chunk = 0
                self._frames_written = 0
                self._overflow_count = 0
                self._overflow_reported = 0
                self._status_count = 0

                self._open_full_file_if_needed()
                self._rotate_chunk_file()

                self._last_frame_at = time.monotonic()
                self._recording = True
                self._writer_thread = threading.Thread(
                    target=self._writer_loop, name="meetingvault-audio-writer", daemon=True
                )
                self._writer_thread.start()

                stream.start()
                self._stream = stream
                self._start_watchdog()
            except Exception as exc:
                self._logger.exception("Failed to start recording: %s", exc)
                self._recording = False
                self._abort_start(stream)
                self._emit_event(Event.error("recording_start_failed", {"error": str(exc)}))
                raise

    def stop(self) -> None:
        with self._lock:
            if not self._recording:
                return
            self._recording = False

            if self._stream is not None:
                try:
                    self._stream.stop()
                    self._stream.close()
                except Exception as exc:
                    self._logger.warning("Input stream stop failed: %s", exc)
                self._stream = None

            self._stop_watchdog()
            self._drain_writer()
            self._report_overflow()

            self._logger.info(
                "Recording stop: frames=%s chunks=%s dropped_buffers=%s status_flags=%s",
                self._frames_written,
                self._chunk_index,
                self._overflow_count,
                self._status_count,
            )
            self._emit_event(
                Event.info(
                    "recording_stopped",
                    {"frames": self._frames_written, "chunks": self._chunk_index},
                )
            )

    def _abort_start(self, stream: Any) -> None:
        if stream is not None:
            try:
                stream.close()
            except Exception as exc:
                self._logger.warning("Input stream close failed: %s", exc)
        self._stop_watchdog()
        if self._writer_thread is not None:
            self._drain_writer()
        else:
            self._close_files()

    # ── Real-time path ─────────────────────────────────────────────────

    def _audio_callback(self, indata, frames, time_info, status) -> None:
        if status:
            self._status_count += 1
        try:
            self._queue.put_nowait(indata.copy())
        except queue.Full:
            self._overflow_count += 1

    # ── Writer thread ──────────────────────────────────────────────────

    def _writer_loop(self) -> None:
        self._logger.debug("Writer loop start: chunks=%s", self._output_directory)
        try:
            while True:
                item = self._queue.get()
                if item is _STOP:
                    break
                self._handle_buffer(item)
        finally:
            self._close_files()
            self._logger.debug("Writer loop complete")

    def _drain_writer(self) -> None:
        thread = self._writer_thread
        if thread is None:
            return
        self._logger.debug("Draining writer (queue size=%s)", self._queue.qsize())
        self._queue.put(_STOP)
        thread.join()
        self._writer_thread = None

    def _handle_buffer(self, block: np.ndarray) -> None:
        self._last_frame_at = time.monotonic()
        self._report_overflow()

        if self._converter is not None:
            try:
                out = self._converter.convert(block)
            except Exception as exc:
                self._emit_issue(
                    IssueKind.CONVERT_ERROR, f"Failed to convert audio buffer: {exc}"
                )
                return
        else:
            out = np.asarray(block).reshape(-1)

        frame_count = int(out.shape[0])
        if frame_count == 0:
            return

        try:
            if (
                self._chunk_file is None
                or (
                    self._frames_in_chunk > 0
                    and self._frames_in_chunk + frame_count >= self._chunk_frame_limit
                )
            ):
                self._rotate_chunk_file()
            self._chunk_file.write(out)
            self._frames_in_chunk += frame_count
        except Exception as exc:
            self._emit_issue(IssueKind.WRITE_ERROR, f"Write failed: {exc}")

        if self._full_file is not None:
            try:
                self._full_file.write(out)
            except Exception as exc:
                self._emit_issue(IssueKind.WRITE_ERROR, f"Write failed: {exc}")
        self._frames_written += frame_count

    def _open_full_file_if_needed(self) -> None:
        if not self._full_file_path or self._full_file is not None:
            return
        self._full_file = _open_wav(self._full_file_path)
        self._emit_event(Event.info("full_file_opened", {"path": self._full_file_path}))

    def _rotate_chunk_file(self) -> None:
        # Open the successor before closing the current chunk so a failed open
        # neither leaves a gap in the numbering nor drops the active file.
        next_index = self._chunk_index + 1
        path = os.path.join(self._output_directory, f"{next_index:06d}.wav")
        new_file = _open_wav(path)
        previous = self._chunk_file
        self._chunk_file = new_file
        self._chunk_index = next_index
        self._frames_in_chunk = 0
        if previous is not None:
            try:
                previous.close()
            except Exception as exc:
                self._emit_issue(IssueKind.WRITE_ERROR, f"Chunk close failed: {exc}")
        self._emit_event(Event.info("chunk_started", {"index": next_index, "path": path}))

    def _close_files(self) -> None:
        for name in ("_chunk_file", "_full_file"):
            handle = getattr(self, name)
            if handle is None:
                continue
            try:
                handle.close()
            except Exception as exc:
                self._emit_issue(IssueKind.WRITE_ERROR, f"Close failed: {exc}")
            setattr(self, name, None)

    def _report_overflow(self) -> None:
        dropped = self._overflow_count - self._overflow_reported
        if dropped <= 0:
            return
        self._overflow_reported += dropped
        self._emit_issue(
            IssueKind.WRITE_ERROR,
            f"Dropped {dropped} audio buffer(s): writer queue full",
        )

    # ── Watchdog ───────────────────────────────────────────────────────

    def _start_watchdog(self) -> None:
        self._watchdog_stop.clear()
        self._watchdog_thread = threading.Thread(
            target=self._watchdog_loop, name="meetingvault-audio-watchdog", daemon=True
        )
        self._watchdog_thread.start()

    def _stop_watchdog(self) -> None:
        self._watchdog_stop.set()
        if self._watchdog_thread is not None:
            self._watchdog_thread.join(timeout=5)
            self._watchdog_thread = None

    def _watchdog_loop(self) -> None:
        while not self._watchdog_stop.wait(self._watchdog_interval):
            if not self._recording:
                continue
            silence = time.monotonic() - self._last_frame_at
            if silence > self._silence_threshold:
                self._emit_issue(
                    IssueKind.NO_AUDIO_FRAMES,
                    f"No audio frames for {silence:.1f}s (check microphone input)",
                )

    # ── Observers ──────────────────────────────────────────────────────

    def _emit_event(self, event: Event) -> None:
        self._logger.debug("Recorder event: type=%s data=%s", event.type, event.data)
        if self.on_event is None:
            return
        try:
            self.on_event(event)
        except Exception as exc:
            self._logger.exception("on_event observer failed: %s", exc)

    def _emit_issue(self, kind: IssueKind, message: str) -> None:
        self._logger.warning("Recorder issue: kind=%s message=%s", kind.value, message)
        if self.on_issue is None:
            return
        try:
            self.on_issue(RecorderIssue(kind=kind, message=message))
        except Exception as exc:
            self._logger.exception("on_issue observer failed: %s", exc)
