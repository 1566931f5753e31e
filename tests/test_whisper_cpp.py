import subprocess

import pytest

from meetingvault.services.transcription import (
    MissingBinaryError,
    MissingModelError,
    OutputDecodingError,
    ProcessFailedError,
    Transcript,
    TranscriptSegment,
    WhisperCppProvider,
    read_transcript,
    read_transcript_text,
    write_transcript,
)
from meetingvault.services.transcription.whisper_cpp import parse_segments, parse_timestamp_ms

WHISPER_STDOUT = """\
whisper_init_from_file: loading model
[00:00:00.000 --> 00:00:02.500]   Good morning everyone.
[00:00:02.500 --> 00:00:05.04]  Let's review the launch plan.
[00:00:05.040 --> 00:00:06.000]
garbage line
[00:00:06.000 00:00:07.000] no arrow
[00:00:0².000 --> 00:00:07.000]  superscript digit
[00:01:02.5 --> 00:01:03.1234]  Ship it on Friday.
"""


@pytest.mark.parametrize(
    "value, expected",
    [
        ("00:01:02.5", 62500),
        ("00:00:00.000", 0),
        ("01:00:00.001", 3_600_001),
        ("00:00:01.12345", 1123),
        ("00:00:01.05", 1050),
    ],
)
def test_parse_timestamp_ms(value, expected):
    assert parse_timestamp_ms(value) == expected


@pytest.mark.parametrize(
    "value",
    ["00:01", "00:00:01", "aa:00:01.000", "00:00:01.", "00:00:01.x", "00:00:0².000", "٠٠:00:01.000"],
)
def test_parse_timestamp_rejects_malformed(value):
    assert parse_timestamp_ms(value) is None


def test_parse_segments_skips_malformed_lines():
    segments = parse_segments(WHISPER_STDOUT)
    assert segments == [
        TranscriptSegment(0, 2500, "Good morning everyone."),
        TranscriptSegment(2500, 5040, "Let's review the launch plan."),
        TranscriptSegment(62500, 63123, "Ship it on Friday."),
    ]
    assert Transcript(segments).text == (
        "Good morning everyone.\nLet's review the launch plan.\nShip it on Friday."
    )


def test_build_command_with_and_without_language():
    provider = WhisperCppProvider("/m/ggml.bin", binary="/usr/bin/whisper-cli")
    assert provider.build_command("/a.wav") == ["/usr/bin/whisper-cli", "-m", "/m/ggml.bin", "-f", "/a.wav"]
    provider = WhisperCppProvider("/m/ggml.bin", language="ko")
    assert provider.build_command("/a.wav")[-2:] == ["-l", "ko"]


@pytest.fixture
def model_path(tmp_path):
    path = tmp_path / "ggml-base.bin"
    path.write_bytes(b"model")
    return str(path)


def test_transcribe_runs_process_and_parses(monkeypatch, model_path):
    calls = []

    def fake_run(args, capture_output, check):
        calls.append(args)
        return subprocess.CompletedProcess(args, 0, stdout=WHISPER_STDOUT.encode("utf-8"), stderr=b"")

    monkeypatch.setattr(subprocess, "run", fake_run)
    transcript = WhisperCppProvider(model_path).transcribe("/rec/full.wav")

    assert calls == [["whisper-cli", "-m", model_path, "-f", "/rec/full.wav"]]
    assert len(transcript.segments) == 3


def test_missing_model_checked_before_launch(monkeypatch, tmp_path):
    monkeypatch.setattr(subprocess, "run", lambda *a, **k: pytest.fail("process launched"))
    with pytest.raises(MissingModelError):
        WhisperCppProvider(str(tmp_path / "missing.bin")).transcribe("/a.wav")


def test_missing_binary(monkeypatch, model_path):
    def fake_run(args, capture_output, check):
        raise FileNotFoundError(args[0])

    monkeypatch.setattr(subprocess, "run", fake_run)
    with pytest.raises(MissingBinaryError):
        WhisperCppProvider(model_path, binary="nope").transcribe("/a.wav")


def test_process_failure_keeps_stderr(monkeypatch, model_path):
    monkeypatch.setattr(
        subprocess,
        "run",
        lambda args, capture_output, check: subprocess.CompletedProcess(
            args, 3, stdout=b"", stderr=b"error: failed to read audio\n"
        ),
    )
    with pytest.raises(ProcessFailedError) as info:
        WhisperCppProvider(model_path).transcribe("/a.wav")
    assert info.value.exit_code == 3
    assert info.value.stderr == "error: failed to read audio\n"


def test_undecodable_output(monkeypatch, model_path):
    monkeypatch.setattr(
        subprocess,
        "run",
        lambda args, capture_output, check: subprocess.CompletedProcess(
            args, 0, stdout=b"\xff\xfe\xfa", stderr=b""
        ),
    )
    with pytest.raises(OutputDecodingError):
        WhisperCppProvider(model_path).transcribe("/a.wav")


def test_segments_round_trip_through_disk(tmp_path):
    transcript = Transcript(parse_segments(WHISPER_STDOUT))
    text_path = str(tmp_path / "transcript.txt")
    segments_path = str(tmp_path / "segments.jsonl")
    write_transcript(transcript, text_path, segments_path)

    assert read_transcript(segments_path) == transcript
    assert read_transcript_text(text_path) == transcript.text
    with open(segments_path, encoding="utf-8") as handle:
        first = handle.readline()
    assert '"startMs": 0' in first and '"endMs": 2500' in first
