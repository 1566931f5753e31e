from __future__ import annotations

import logging
import os
import subprocess
import time
from typing import Optional

from meetingvault.services.transcription.base import (
    MissingBinaryError,
    MissingModelError,
    OutputDecodingError,
    ProcessFailedError,
    Transcript,
    TranscriptionProvider,
    TranscriptSegment,
)


class WhisperCppProvider(TranscriptionProvider):
    """Runs ``whisper-cli`` on a finished recording and parses its timestamped stdout."""

    def __init__(
        self,
        model_path: str,
        binary: str = "whisper-cli",
        language: Optional[str] = None,
    ) -> None:
        self._model_path = model_path
        self._binary = binary
        self._language = language
        self._logger = logging.getLogger("meetingvault.transcription.whisper")

    def build_command(self, audio_path: str) -> list[str]:
        args = [self._binary, "-m", self._model_path, "-f", audio_path]
        if self._language:
            args.extend(["-l", self._language])
        return args

    def transcribe(self, audio_path: str) -> Transcript:
        if not os.path.exists(self._model_path):
            raise MissingModelError(self._model_path)

        args = self.build_command(audio_path)
        self._logger.info("Transcription start: %s", " ".join(args))
        start_time = time.perf_counter()
        try:
            completed = subprocess.run(args, capture_output=True, check=False)
        except (FileNotFoundError, PermissionError) as exc:
            self._logger.warning("whisper-cli launch failed: %s", exc)
            raise MissingBinaryError(self._binary) from exc

        stderr = (completed.stderr or b"").decode("utf-8", errors="replace")
        if completed.returncode != 0:
            self._logger.warning(
                "whisper-cli exited %s: %s", completed.returncode, stderr.strip()[:500]
            )
            raise ProcessFailedError(completed.returncode, stderr)

        try:
            output = (completed.stdout or b"").decode("utf-8")
        except UnicodeDecodeError as exc:
            raise OutputDecodingError() from exc

        segments = parse_segments(output)
        self._logger.info(
            "Transcription complete: segments=%s duration=%.2fs",
            len(segments),
            time.perf_counter() - start_time,
        )
        return Transcript(segments=segments)


def parse_segments(output: str) -> list[TranscriptSegment]:
    """Parse lines like ``[00:00:00.000 --> 00:00:01.590]   hello``.

    Lines that don't match are skipped; whisper.cpp builds differ in what
    else they print on stdout.
    """
    segments: list[TranscriptSegment] = []
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line.startswith("["):
            continue
        close = line.find("]")
        arrow = line.find("-->")
        if close < 0 or arrow < 0 or arrow > close:
            continue

        text = line[close + 1 :].strip()
        if not text:
            continue

        parts = line[1:close].split()
        if len(parts) < 3:
            continue
        start_ms = parse_timestamp_ms(parts[0])
        end_ms = parse_timestamp_ms(parts[2])
        if start_ms is None or end_ms is None:
            continue

        segments.append(TranscriptSegment(start_ms=start_ms, end_ms=end_ms, text=text))
    return segments


def parse_timestamp_ms(value: str) -> Optional[int]:
    """``hh:mm:ss.mmm`` to milliseconds; the fraction may have 1-3+ digits."""
    parts = value.split(":")
    if len(parts) != 3:
        return None
    sec_parts = parts[2].split(".")
    if len(sec_parts) != 2:
        return None
    fraction = sec_parts[1]
    if not fraction:
        return None
    fraction = fraction.ljust(3, "0")[:3]
    fields = (parts[0], parts[1], sec_parts[0], fraction)
    if not all(field.isascii() and field.isdigit() for field in fields):
        return None
    hours, minutes, seconds, millis = (int(field) for field in fields)
    return ((hours * 60 + minutes) * 60 + seconds) * 1000 + millis
