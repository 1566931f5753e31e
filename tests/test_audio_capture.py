import os
import threading
import time

import numpy as np
import pytest
import soundfile as sf

from meetingvault.services.audio_capture import ChunkedMicRecorder, IssueKind


def _read_int16(path):
    data, samplerate = sf.read(path, dtype="int16")
    assert samplerate == 16000
    return data


def _chunk_paths(directory):
    return sorted(os.path.join(directory, name) for name in os.listdir(directory))


def _make_recorder(tmp_path, factory, segment_seconds=0.1, **kwargs):
    chunks_dir = tmp_path / "chunks"
    chunks_dir.mkdir()
    events, issues = [], []
    recorder = ChunkedMicRecorder(
        str(chunks_dir),
        str(tmp_path / "full.wav"),
        segment_seconds=segment_seconds,
        on_event=events.append,
        on_issue=issues.append,
        stream_factory=factory,
        **kwargs,
    )
    return recorder, chunks_dir, events, issues


def test_rotation_is_exact_and_drops_nothing(tmp_path, canonical_factory):
    recorder, chunks_dir, events, issues = _make_recorder(tmp_path, canonical_factory)
    recorder.start()
    assert recorder.chunk_frame_limit == 1600

    for i in range(10):
        block = np.full((500, 1), i, dtype=np.int16)
        canonical_factory.stream.push(block)
    recorder.stop()

    paths = _chunk_paths(str(chunks_dir))
    assert [os.path.basename(p) for p in paths] == [
        "000001.wav",
        "000002.wav",
        "000003.wav",
        "000004.wav",
    ]
    sizes = [len(_read_int16(p)) for p in paths]
    assert sizes == [1500, 1500, 1500, 500]
    assert all(size < 1600 for size in sizes)
    assert sum(sizes) == recorder.frames_written == 5000
    assert issues == []

    types = [event.type for event in events]
    assert types[0] == "recording_started"
    assert types[-1] == "recording_stopped"
    assert types.count("chunk_started") == 4
    assert "full_file_opened" in types
    started = [e for e in events if e.type == "chunk_started"]
    assert [e.data["index"] for e in started] == ["1", "2", "3", "4"]


def test_chunks_concatenate_to_full_file(tmp_path, stereo_48k_factory):
    recorder, chunks_dir, _, issues = _make_recorder(tmp_path, stereo_48k_factory, segment_seconds=0.25)
    recorder.start()

    t = np.arange(4800 * 6) / 48000.0
    signal = (0.4 * np.sin(2 * np.pi * 440.0 * t)).astype(np.float32)
    stereo = np.stack([signal, signal], axis=1)
    for start in range(0, len(stereo), 4800):
        stereo_48k_factory.stream.push(stereo[start : start + 4800])
    recorder.stop()

    chunks = [_read_int16(p) for p in _chunk_paths(str(chunks_dir))]
    full = _read_int16(str(tmp_path / "full.wav"))
    assert len(full) == 1600 * 6
    assert np.array_equal(np.concatenate(chunks), full)
    assert len(chunks) == 3
    assert issues == []


def test_convert_failure_drops_buffer_and_keeps_recording(tmp_path, stereo_48k_factory):
    recorder, _, _, issues = _make_recorder(tmp_path, stereo_48k_factory, segment_seconds=1.0)
    recorder.start()

    good = np.zeros((4800, 2), dtype=np.float32)
    stereo_48k_factory.stream.push(good)
    stereo_48k_factory.stream.push(np.zeros((4800, 3), dtype=np.float32))
    stereo_48k_factory.stream.push(good)
    recorder.stop()

    assert [issue.kind for issue in issues] == [IssueKind.CONVERT_ERROR]
    assert recorder.frames_written == 3200
    assert len(_read_int16(str(tmp_path / "full.wav"))) == 3200


def test_watchdog_reports_missing_frames(tmp_path, canonical_factory):
    recorder, _, _, issues = _make_recorder(
        tmp_path, canonical_factory, watchdog_interval=0.05, silence_threshold=0.1
    )
    recorder.start()
    deadline = time.monotonic() + 5.0
    while not issues and time.monotonic() < deadline:
        time.sleep(0.05)
    recorder.stop()

    assert issues, "watchdog never fired"
    assert issues[0].kind == IssueKind.NO_AUDIO_FRAMES
    assert issues[0].message.startswith("No audio frames for ")
    assert issues[0].message.endswith("s (check microphone input)")


def test_stop_is_idempotent_and_start_twice_is_noop(tmp_path, canonical_factory):
    recorder, _, events, _ = _make_recorder(tmp_path, canonical_factory)
    recorder.start()
    first_stream = canonical_factory.stream
    recorder.start()
    assert canonical_factory.stream is first_stream

    canonical_factory.stream.push(np.zeros((100, 1), dtype=np.int16))
    recorder.stop()
    recorder.stop()

    assert not recorder.is_recording
    assert first_stream.closed
    assert [e.type for e in events].count("recording_stopped") == 1


def test_queue_overflow_is_reported_as_write_error(tmp_path, canonical_factory):
    recorder, _, _, issues = _make_recorder(tmp_path, canonical_factory, queue_size=1)
    release = threading.Event()
    handle_buffer = recorder._handle_buffer

    def stalled_handle_buffer(block):
        release.wait(5)
        handle_buffer(block)

    recorder._handle_buffer = stalled_handle_buffer
    recorder.start()
    # The writer holds at most one buffer and the queue one more.
    for _ in range(200):
        canonical_factory.stream.push(np.zeros((10, 1), dtype=np.int16))
    release.set()
    recorder.stop()

    dropped = recorder.dropped_buffers
    assert dropped >= 198
    assert dropped + recorder.frames_written // 10 == 200
    reported = [
        issue for issue in issues
        if issue.kind == IssueKind.WRITE_ERROR and issue.message.startswith("Dropped")
    ]
    assert reported
    assert sum(int(issue.message.split()[1]) for issue in reported) == dropped


def test_chunk_only_capture_writes_no_full_file(tmp_path, canonical_factory):
    chunks_dir = tmp_path / "chunks"
    chunks_dir.mkdir()
    recorder = ChunkedMicRecorder(
        str(chunks_dir), None, segment_seconds=1.0, stream_factory=canonical_factory
    )
    recorder.start()
    canonical_factory.stream.push(np.ones((320, 1), dtype=np.int16))
    recorder.stop()

    assert not (tmp_path / "full.wav").exists()
    assert len(_read_int16(str(chunks_dir / "000001.wav"))) == 320


def test_failed_start_returns_to_idle(tmp_path):
    def broken_factory(callback):
        raise RuntimeError("no device")

    chunks_dir = tmp_path / "chunks"
    chunks_dir.mkdir()
    events = []
    recorder = ChunkedMicRecorder(
        str(chunks_dir), str(tmp_path / "full.wav"), on_event=events.append, stream_factory=broken_factory
    )
    with pytest.raises(RuntimeError, match="no device"):
        recorder.start()

    assert not recorder.is_recording
    assert [e.type for e in events] == ["recording_started", "recording_start_failed"]


def test_invalid_segment_seconds_rejected(tmp_path):
    with pytest.raises(ValueError):
        ChunkedMicRecorder(str(tmp_path), None, segment_seconds=0)
