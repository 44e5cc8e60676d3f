"""Mono audio buffers and level helpers."""

from __future__ import annotations

import math

import numpy as np

DEFAULT_SAMPLE_RATE = 48000

PEAK_TARGET = 0.9
PEAK_FLOOR = 1e-3

WAVEFORMS = ("sine", "square", "saw", "triangle")


class AudioBuffer:
    """Mono float32 samples plus a sample rate.

    The constructor always copies ``samples``, so two buffers never share
    storage and callers may keep mutating the array they passed in.

    Example:
        >>> buf = AudioBuffer([0.5, -0.25, 0.0], sample_rate=48000)
        >>> buf.length
        3
    """

    __slots__ = ("samples", "sample_rate")

    def __init__(self, samples, sample_rate: int = DEFAULT_SAMPLE_RATE) -> None:
        data = np.array(samples, dtype=np.float32)
        if data.ndim != 1:
            raise ValueError(f"AudioBuffer is mono, got array of shape {data.shape}")
        sample_rate = int(sample_rate)
        if sample_rate <= 0:
            raise ValueError(f"Sample rate must be positive, got {sample_rate}")
        self.samples = data
        self.sample_rate = sample_rate

    @classmethod
    def silence(cls, length: int, sample_rate: int = DEFAULT_SAMPLE_RATE) -> AudioBuffer:
        return cls(np.zeros(length, dtype=np.float32), sample_rate)

    @property
    def length(self) -> int:
        return int(self.samples.size)

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        return self.length / self.sample_rate

    def copy(self) -> AudioBuffer:
        return AudioBuffer(self.samples, self.sample_rate)

    def __len__(self) -> int:
        return self.length

    def __repr__(self) -> str:
        return (
            f"AudioBuffer(length={self.length}, sample_rate={self.sample_rate}, "
            f"duration={self.duration:.3f}s)"
        )


# ---------------------------------------------------------------------------
# Level helpers
# ---------------------------------------------------------------------------


def gain_to_db(gain: float) -> float:
    """Convert linear gain to decibels."""
    if gain <= 0:
        return -math.inf
    return 20.0 * math.log10(gain)


def db_to_gain(db: float) -> float:
    """Convert decibels to linear gain."""
    return 10.0 ** (db / 20.0)


def peak(buf: AudioBuffer) -> tuple[float, int]:
    """Return ``(level, position)`` of the largest absolute sample."""
    if buf.length == 0:
        return 0.0, 0
    pos = int(np.argmax(np.abs(buf.samples)))
    return float(abs(buf.samples[pos])), pos


def normalize_peak(
    data: np.ndarray, target: float = PEAK_TARGET, floor: float = PEAK_FLOOR
) -> np.ndarray:
    """Scale ``data`` in place so its peak equals ``target``.

    Signals whose peak does not exceed ``floor`` are left untouched, so
    silence is never amplified into noise.
    """
    if data.size == 0:
        return data
    level = float(np.max(np.abs(data)))
    if level > floor:
        data *= target / level
    return data


# ---------------------------------------------------------------------------
# Test-tone synthesis
# ---------------------------------------------------------------------------


def synth_wave(
    waveform: str = "sine",
    frequency: float = 440.0,
    amplitude: float = 0.8,
    duration: float = 1.0,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
) -> AudioBuffer:
    """Generate a naive (non band-limited) periodic test tone."""
    if waveform not in WAVEFORMS:
        raise ValueError(f"Unknown waveform {waveform!r}, valid names: {list(WAVEFORMS)}")
    if frequency <= 0:
        raise ValueError(f"Frequency must be positive, got {frequency}")
    if duration < 0:
        raise ValueError(f"Duration must be non-negative, got {duration}")

    t = np.arange(int(round(duration * sample_rate))) / sample_rate
    phase = (frequency * t) % 1.0
    if waveform == "sine":
        data = np.sin(2.0 * np.pi * phase)
    elif waveform == "square":
        data = np.where(phase < 0.5, 1.0, -1.0)
    elif waveform == "saw":
        data = 2.0 * phase - 1.0
    else:
        data = 1.0 - 4.0 * np.abs(phase - 0.5)
    return AudioBuffer(amplitude * data, sample_rate)
