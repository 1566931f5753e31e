import numpy as np
import pytest

from meetingvault.services.audio_convert import AudioFormat


class FakeInputStream:
    """Stands in for ``sounddevice.InputStream``; the test pushes buffers by hand."""

    def __init__(self, callback, native: AudioFormat) -> None:
        self.callback = callback
        self.native = native
        self.started = False
        self.closed = False

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.started = False

    def close(self) -> None:
        self.closed = True

    def push(self, block: np.ndarray) -> None:
        self.callback(block, len(block), None, None)


class FakeStreamFactory:
    def __init__(self, native: AudioFormat) -> None:
        self.native = native
        self.stream = None

    def __call__(self, callback):
        self.stream = FakeInputStream(callback, self.native)
        return self.stream, self.native


@pytest.fixture
def canonical_factory():
    return FakeStreamFactory(AudioFormat(sample_rate=16000, channels=1, dtype="int16"))


@pytest.fixture
def stereo_48k_factory():
    return FakeStreamFactory(AudioFormat(sample_rate=48000, channels=2, dtype="float32"))
