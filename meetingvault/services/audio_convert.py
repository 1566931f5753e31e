"""Conversion of captured buffers to the canonical transcription format."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


class AudioConversionError(RuntimeError):
    pass


@dataclass(frozen=True)
class AudioFormat:
    sample_rate: int
    channels: int
    dtype: str = "float32"


# What whisper.cpp expects: 16 kHz mono signed 16-bit PCM.
CANONICAL_FORMAT = AudioFormat(sample_rate=16_000, channels=1, dtype="int16")

_SUPPORTED_DTYPES = ("int16", "int32", "float32", "float64")


class StreamingResampler:
    """Linear-interpolation resampler that stays continuous across buffers.

    The last input sample of each buffer is carried into the next call and
    the fractional read position is preserved, so splitting a signal into
    arbitrary blocks yields the same output as resampling it in one go.
    """

    def __init__(self, source_rate: int, target_rate: int) -> None:
        if source_rate <= 0 or target_rate <= 0:
            raise ValueError("Sample rates must be > 0")
        self._step = source_rate / target_rate
        self._next = 0.0
        self._carry = np.zeros(0, dtype=np.float64)

    def process(self, samples: np.ndarray) -> np.ndarray:
        if samples.size == 0:
            return np.zeros(0, dtype=np.float64)
        ext = np.concatenate([self._carry, samples.astype(np.float64, copy=False)])
        last = ext.size - 1
        if self._next > last:
            count = 0
        else:
            count = int(np.floor((last - self._next) / self._step)) + 1
        positions = self._next + self._step * np.arange(count)
        out = np.interp(positions, np.arange(ext.size), ext)
        self._next = self._next + self._step * count - last
        self._carry = ext[-1:].copy()
        return out


class AudioConverter:
    """Downmixes, resamples and requantizes blocks from ``source`` to ``target``."""

    def __init__(self, source: AudioFormat, target: AudioFormat = CANONICAL_FORMAT) -> None:
        if target.channels != 1 or target.dtype != "int16":
            raise ValueError("Only mono int16 output is supported")
        if source.dtype not in _SUPPORTED_DTYPES:
            raise ValueError(f"Unsupported source sample format: {source.dtype}")
        if source.channels < 1:
            raise ValueError("Source must have at least one channel")
        self._source = source
        self._resampler = (
            StreamingResampler(source.sample_rate, target.sample_rate)
            if source.sample_rate != target.sample_rate
            else None
        )

    def convert(self, block: np.ndarray) -> np.ndarray:
        data = np.asarray(block)
        if data.ndim == 1:
            if self._source.channels != 1:
                raise AudioConversionError(
                    f"Expected {self._source.channels} channels, got a 1-D buffer"
                )
            data = data.reshape(-1, 1)
        elif data.ndim != 2 or data.shape[1] != self._source.channels:
            raise AudioConversionError(
                f"Expected (frames, {self._source.channels}) buffer, got shape {data.shape}"
            )

        mono = _to_float(data).mean(axis=1)
        if self._resampler is not None:
            mono = self._resampler.process(mono)
        if not np.all(np.isfinite(mono)):
            raise AudioConversionError("Buffer contains non-finite samples")
        return (np.clip(mono, -1.0, 1.0) * 32767.0).round().astype(np.int16)


def _to_float(data: np.ndarray) -> np.ndarray:
    if data.dtype == np.int16:
        return data.astype(np.float64) / 32768.0
    if data.dtype == np.int32:
        return data.astype(np.float64) / 2147483648.0
    if data.dtype in (np.float32, np.float64):
        return data.astype(np.float64, copy=False)
    raise AudioConversionError(f"Unsupported sample dtype: {data.dtype}")


def needs_conversion(source: AudioFormat, target: AudioFormat = CANONICAL_FORMAT) -> bool:
    return source != target
