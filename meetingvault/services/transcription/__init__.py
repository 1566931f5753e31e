from meetingvault.services.transcription.base import (
    MissingBinaryError,
    MissingModelError,
    OutputDecodingError,
    ProcessFailedError,
    Transcript,
    TranscriptSegment,
    TranscriptionProvider,
    TranscriptionProviderError,
)
from meetingvault.services.transcription.transcript_io import (
    read_transcript,
    read_transcript_text,
    write_transcript,
)
from meetingvault.services.transcription.whisper_cpp import WhisperCppProvider

__all__ = [
    "MissingBinaryError",
    "MissingModelError",
    "OutputDecodingError",
    "ProcessFailedError",
    "Transcript",
    "TranscriptSegment",
    "TranscriptionProvider",
    "TranscriptionProviderError",
    "WhisperCppProvider",
    "read_transcript",
    "read_transcript_text",
    "write_transcript",
]
