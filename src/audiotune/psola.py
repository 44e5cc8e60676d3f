"""Time-domain pitch-synchronous overlap-add (PSOLA) pitch shifting.

Pitch marks are placed one estimated period apart through the input.
Output marks are then laid out with every period divided by the shift
ratio. Each output mark receives a Hann-windowed grain copied from the
nearest input mark. The grains themselves are never resampled: only their
spacing changes, so the output keeps the input's length.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from audiotune.buffer import AudioBuffer, normalize_peak
from audiotune.errors import ShiftError
from audiotune.fft import hann
from audiotune.notes import clamp_ratio

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PsolaSettings:
    """Tuning constants for mark detection and grain placement.

    The defaults were chosen by ear; shorter grains or tighter mark spacing
    trade smearing for audible grain boundaries.
    """

    min_period: int = 32
    max_period: int = 2048
    correlation_threshold: float = 0.3
    fallback_advance: int = 200
    min_mark_spacing: int = 20
    min_grain: int = 64
    max_grain: int = 4096

    def __post_init__(self) -> None:
        if not 0 < self.min_period < self.max_period:
            raise ValueError(
                f"need 0 < min_period < max_period, got {self.min_period}, {self.max_period}"
            )
        if self.fallback_advance < 1 or self.min_mark_spacing < 1:
            raise ValueError("fallback_advance and min_mark_spacing must be >= 1")
        if not 0 < self.min_grain <= self.max_grain:
            raise ValueError(
                f"need 0 < min_grain <= max_grain, got {self.min_grain}, {self.max_grain}"
            )


DEFAULT_SETTINGS = PsolaSettings()


class PitchMarks:
    """Strictly increasing sample positions of period boundaries, starting at 0.

    Each mark after the first also records whether the distance to it was an
    estimated period or a fixed fallback advance.
    """

    def __init__(self) -> None:
        self._positions = [0]
        self._estimated: list[bool] = []

    def append(self, position: int, estimated: bool = True) -> None:
        position = int(position)
        if position <= self._positions[-1]:
            raise ValueError(
                f"pitch mark {position} does not follow {self._positions[-1]}"
            )
        self._positions.append(position)
        self._estimated.append(bool(estimated))

    @property
    def positions(self) -> np.ndarray:
        return np.asarray(self._positions, dtype=np.intp)

    def periods(self) -> np.ndarray:
        """Distances between consecutive marks."""
        return np.diff(self.positions)

    def estimated(self) -> np.ndarray:
        """Per period, True where it came from an autocorrelation estimate."""
        return np.asarray(self._estimated, dtype=bool)

    def pitch_periods(self) -> np.ndarray:
        """``periods()`` with every fallback advance replaced by a real period.

        A fallback takes the most recent estimated period before it; leading
        fallbacks take the first estimate. Without any estimate the raw
        distances are returned unchanged.
        """
        periods = self.periods()
        estimated = self.estimated()
        if not estimated.any():
            return periods
        index = np.where(estimated, np.arange(periods.size), -1)
        index = np.maximum.accumulate(index)
        index[index < 0] = int(np.argmax(estimated))
        return periods[index]

    def nearest(self, position: int) -> int:
        """Index of the mark closest to ``position``; ties go to the earlier mark."""
        positions = self._positions
        j = int(np.searchsorted(positions, position))
        if j == 0:
            return 0
        if j == len(positions):
            return j - 1
        if position - positions[j - 1] <= positions[j] - position:
            return j - 1
        return j

    def __len__(self) -> int:
        return len(self._positions)

    def __iter__(self):
        return iter(self._positions)

    def __getitem__(self, index: int) -> int:
        return self._positions[index]

    def __repr__(self) -> str:
        return f"PitchMarks(count={len(self)})"


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


def estimate_period(
    samples: np.ndarray, start: int, settings: PsolaSettings = DEFAULT_SETTINGS
) -> int:
    """Local period in samples at ``start`` by normalized autocorrelation.

    Each lag's autocorrelation is divided by the window energy (lag 0), so
    values stay within [-1, 1] and shrink as the overlap does.

    Returns 0 when fewer than ``max_period`` samples remain or no lag
    correlates above the threshold.
    """
    n = samples.size
    if start + settings.max_period >= n:
        return 0
    search = settings.max_period
    seg = np.asarray(samples[start : start + search], dtype=np.float64)

    spectrum = np.fft.rfft(seg, 2 * search)
    ac = np.fft.irfft(spectrum * np.conj(spectrum), 2 * search)[:search]
    if ac[0] <= 0:
        return 0
    lags = np.arange(settings.min_period, search)
    corr = ac[lags] / ac[0]
    best = int(np.argmax(corr))
    if corr[best] > settings.correlation_threshold:
        return int(lags[best])
    return 0


def detect_pitch_marks(
    samples: np.ndarray, settings: PsolaSettings = DEFAULT_SETTINGS
) -> PitchMarks:
    marks = PitchMarks()
    n = samples.size
    position = 0
    while position < n:
        period = estimate_period(samples, position, settings)
        estimated = 0 < period < settings.max_period
        position += period if estimated else settings.fallback_advance
        if position < n:
            marks.append(position, estimated)
    return marks


def _output_marks(
    periods: np.ndarray, ratio: float, length: int, settings: PsolaSettings
) -> PitchMarks:
    """Marks spaced ``periods[i] / ratio`` apart, repeating the last period
    once the input runs out before ``length`` is covered."""
    marks = PitchMarks()
    out_pos = 0
    idx = 0
    last = periods.size
    while out_pos < length:
        out_period = max(int(periods[min(idx, last - 1)] / ratio), settings.min_mark_spacing)
        out_pos += out_period
        if out_pos < length:
            marks.append(out_pos)
        idx += 1
    return marks


# ---------------------------------------------------------------------------
# Synthesis
# ---------------------------------------------------------------------------


def extract_grain(samples: np.ndarray, center: int, window: np.ndarray) -> np.ndarray:
    """Windowed grain centred on ``center``; samples outside the input are zero."""
    size = window.size
    begin = center - size // 2
    grain = np.zeros(size)
    lo = max(0, -begin)
    hi = min(size, samples.size - begin)
    if hi > lo:
        grain[lo:hi] = samples[begin + lo : begin + hi]
    return grain * window


def overlap_add(output: np.ndarray, grain: np.ndarray, center: int) -> None:
    """Add ``grain`` into ``output`` centred on ``center``, dropping overhang."""
    size = grain.size
    begin = center - size // 2
    lo = max(0, -begin)
    hi = min(size, output.size - begin)
    if hi > lo:
        output[begin + lo : begin + hi] += grain[lo:hi]


def psola_shift(
    buf: AudioBuffer, ratio: float, settings: PsolaSettings | None = None
) -> AudioBuffer:
    """Shift the pitch of ``buf`` by ``ratio`` keeping its length.

    ``ratio`` is clamped to [0.5, 2.0]; > 1 raises the pitch.

    Raises:
        ShiftError: fewer than two pitch marks were found.
    """
    settings = settings or DEFAULT_SETTINGS
    ratio = clamp_ratio(ratio)
    x = buf.samples.astype(np.float64)
    n = x.size

    input_marks = detect_pitch_marks(x, settings)
    logger.debug("PSOLA ratio %.4f: %d input pitch marks", ratio, len(input_marks))
    if len(input_marks) < 2:
        raise ShiftError(f"not enough pitch marks ({len(input_marks)}) in {n} samples")

    periods = input_marks.pitch_periods()
    avg_period = int(periods.sum()) // periods.size
    output_marks = _output_marks(periods, ratio, n, settings)

    grain_size = int(np.clip(avg_period * 2, settings.min_grain, settings.max_grain))
    logger.debug(
        "average period %d, %d output marks, grain size %d",
        avg_period,
        len(output_marks),
        grain_size,
    )

    windows: dict[int, np.ndarray] = {}
    positions = input_marks.positions
    output = np.zeros(n)
    grains = 0
    for out_mark in output_marks:
        j = input_marks.nearest(out_mark)
        in_mark = int(positions[j])
        if not (0 <= in_mark < n and 0 <= out_mark < n):
            continue

        local_size = grain_size
        if j < len(positions) - 1:
            local_period = int(positions[j + 1]) - in_mark
            if settings.min_mark_spacing < local_period < settings.max_period:
                local_size = min(local_period * 2, grain_size)
        local_size = int(np.clip(local_size, settings.min_grain, settings.max_grain))

        window = windows.get(local_size)
        if window is None:
            window = windows[local_size] = hann(local_size)
        overlap_add(output, extract_grain(x, in_mark, window), out_mark)
        grains += 1

    logger.debug("placed %d grains", grains)
    normalize_peak(output)
    return AudioBuffer(output, buf.sample_rate)
