"""Phase vocoder pitch shifting.

The input is time-stretched by the pitch ratio with a short-time Fourier
analysis/resynthesis loop, then linearly resampled back to its original
length. Stretching keeps the pitch, and resampling converts the length
change into a pitch change, so the duration is preserved overall.
"""

from __future__ import annotations

import logging

import numpy as np

from audiotune.buffer import AudioBuffer, normalize_peak
from audiotune.errors import ShiftError
from audiotune.fft import FFTPlan, hann
from audiotune.notes import clamp_ratio

logger = logging.getLogger(__name__)

FFT_SIZE = 2048
HOP_SIZE = 512
SCRATCH_MARGIN = 1.2

TWO_PI = 2.0 * np.pi


def wrap_phase(phase):
    """Map phase values into (-pi, pi]."""
    return np.pi - np.mod(np.pi - phase, TWO_PI)


def time_stretch(
    samples: np.ndarray,
    ratio: float,
    fft_size: int = FFT_SIZE,
    hop_size: int = HOP_SIZE,
) -> tuple[np.ndarray, int]:
    """Stretch ``samples`` by roughly ``ratio`` without changing pitch.

    Returns the overlap-added scratch buffer and the synthesis hop used;
    the effective stretch factor is ``synthesis_hop / hop_size``.
    """
    x = np.asarray(samples, dtype=np.float64)
    n = x.size
    synthesis_hop = max(1, int(hop_size * ratio))
    num_frames = (n - fft_size) // hop_size
    if num_frames <= 0:
        raise ShiftError(
            f"input of {n} samples is too short for a {fft_size}-point analysis frame"
        )

    scratch_len = max(int(n * ratio * SCRATCH_MARGIN), num_frames * synthesis_hop + fft_size)
    stretched = np.zeros(scratch_len)

    plan = FFTPlan(fft_size)
    window = hann(fft_size)
    half = fft_size // 2
    bins = np.arange(half)
    expected = TWO_PI * bins * hop_size / fft_size
    bin_freq = TWO_PI * bins / fft_size

    last_phase = np.zeros(half)
    sum_phase = np.zeros(half)
    # Nyquist bin stays zero
    synth = np.zeros(plan.bins, dtype=np.complex128)

    logger.debug(
        "FFT size %d, analysis hop %d, synthesis hop %d, %d frames",
        fft_size,
        hop_size,
        synthesis_hop,
        num_frames,
    )

    output_pos = 0
    processed = 0
    for frame in range(num_frames):
        input_pos = frame * hop_size
        if input_pos + fft_size > n or output_pos + fft_size > scratch_len:
            # out-of-bounds frames are skipped, never clamped
            output_pos += synthesis_hop
            continue

        spectrum = plan.forward(x[input_pos : input_pos + fft_size] * window)
        magnitude = np.abs(spectrum[:half])
        phase = np.angle(spectrum[:half])

        delta = wrap_phase(phase - last_phase)
        last_phase = phase
        deviation = wrap_phase(delta - expected)
        true_freq = bin_freq + deviation / hop_size
        sum_phase += true_freq * synthesis_hop

        synth[:half] = magnitude * np.exp(1j * sum_phase)
        stretched[output_pos : output_pos + fft_size] += plan.inverse(synth) * window
        output_pos += synthesis_hop
        processed += 1

    logger.debug("processed %d frames, stretched length %d", processed, output_pos)
    stretched *= 2.0 / (fft_size / hop_size)
    return stretched[: output_pos + fft_size - synthesis_hop], synthesis_hop


def resample_linear(data: np.ndarray, length: int, step: float) -> np.ndarray:
    """Read ``data`` at positions ``i * step`` for ``i < length``.

    Positions past the end of ``data`` read as silence.
    """
    pos = np.arange(length) * step
    idx = np.floor(pos).astype(np.intp)
    frac = pos - idx
    out = np.zeros(length)
    size = data.size

    both = idx + 1 < size
    out[both] = data[idx[both]] * (1.0 - frac[both]) + data[idx[both] + 1] * frac[both]
    last = idx == size - 1
    out[last] = data[idx[last]]
    return out


def phase_vocoder_shift(
    buf: AudioBuffer,
    ratio: float,
    fft_size: int = FFT_SIZE,
    hop_size: int = HOP_SIZE,
) -> AudioBuffer:
    """Shift the pitch of ``buf`` by ``ratio`` keeping its length.

    ``ratio`` is clamped to [0.5, 2.0]; > 1 raises the pitch.

    Raises:
        ShiftError: the buffer is shorter than one analysis frame.
    """
    ratio = clamp_ratio(ratio)
    logger.debug("phase vocoder shift, ratio %.4f, %d samples", ratio, buf.length)
    stretched, synthesis_hop = time_stretch(buf.samples, ratio, fft_size, hop_size)
    out = resample_linear(stretched, buf.length, synthesis_hop / hop_size)
    normalize_peak(out)
    return AudioBuffer(out, buf.sample_rate)
