"""YIN fundamental-frequency estimation.

Implements the difference function, cumulative mean normalized difference
(CMND), absolute-threshold lag search and parabolic refinement from
de Cheveigne & Kawahara (2002), plus the windowing and retry policy used
when analysing a recording.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

import numpy as np

from audiotune.buffer import AudioBuffer

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.15
DEFAULT_WINDOW = 2048

# Pass as ``start_sample`` to search for the first non-silent sample.
AUTO_START = -1

START_THRESHOLD = 5.0 / 32768.0
START_MAX_SEARCH = 100_000

NOT_DETECTED = -1.0


@dataclass(frozen=True)
class PitchResult:
    """Outcome of one ``detect_pitch`` call.

    ``pitch`` is -1.0 when no pitch was found; that is a normal result,
    not an error.
    """

    pitch: float
    confidence: float
    sample_rate: int
    num_samples: int
    buffer_size: int
    actual_start_sample: int
    threshold: float

    @property
    def detected(self) -> bool:
        return self.pitch > 0

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Core algorithm
# ---------------------------------------------------------------------------


def difference(samples: np.ndarray) -> np.ndarray:
    """Squared difference function over lags ``0 .. N//2 - 1``."""
    x = np.asarray(samples, dtype=np.float64)
    half = x.size // 2
    d = np.zeros(half)
    head = x[:half]
    for tau in range(1, half):
        delta = head - x[tau : tau + half]
        d[tau] = np.dot(delta, delta)
    return d


def cumulative_mean_normalized_difference(d: np.ndarray) -> np.ndarray:
    cmnd = np.ones_like(d)
    if d.size < 2:
        return cmnd
    running = np.cumsum(d[1:])
    tau = np.arange(1, d.size)
    nonzero = running > 0
    cmnd[1:][nonzero] = d[1:][nonzero] * tau[nonzero] / running[nonzero]
    return cmnd


def absolute_threshold(cmnd: np.ndarray, threshold: float) -> int:
    """First lag >= 2 whose CMND dips below ``threshold``, walked to its minimum.

    Returns -1 if no lag qualifies.
    """
    below = np.flatnonzero(cmnd[2:] < threshold)
    if below.size == 0:
        return -1
    tau = int(below[0]) + 2
    while tau + 1 < cmnd.size and cmnd[tau + 1] < cmnd[tau]:
        tau += 1
    return tau


def parabolic_interpolation(cmnd: np.ndarray, tau: int) -> float:
    """Refine an integer lag using its neighbours."""
    x0 = tau - 1 if tau >= 1 else tau
    x2 = tau + 1 if tau + 1 < cmnd.size else tau
    if x0 == tau:
        return float(tau if cmnd[tau] <= cmnd[x2] else x2)
    if x2 == tau:
        return float(tau if cmnd[tau] <= cmnd[x0] else x0)
    s0, s1, s2 = cmnd[x0], cmnd[tau], cmnd[x2]
    denom = 2.0 * (2.0 * s1 - s2 - s0)
    if denom == 0:
        return float(tau)
    return tau + (s2 - s0) / denom


def detect(
    samples, sample_rate: int, threshold: float = DEFAULT_THRESHOLD
) -> tuple[float, float]:
    """Estimate the fundamental of ``samples``.

    Returns ``(pitch_hz, confidence)`` where confidence is ``1 - CMND`` at
    the chosen lag. On a miss the pitch is -1.0 and the confidence is
    ``1 - min(CMND)`` over lags from 2, not the lowest difference itself;
    it stays below ``1 - threshold``.
    """
    x = np.asarray(samples, dtype=np.float64)
    if x.size < 6:
        return NOT_DETECTED, 0.0
    cmnd = cumulative_mean_normalized_difference(difference(x))
    tau = absolute_threshold(cmnd, threshold)
    if tau < 0:
        best = float(np.min(cmnd[2:]))
        return NOT_DETECTED, float(np.clip(1.0 - best, 0.0, 1.0))
    confidence = float(np.clip(1.0 - cmnd[tau], 0.0, 1.0))
    better_tau = parabolic_interpolation(cmnd, tau)
    if better_tau <= 0:
        return NOT_DETECTED, confidence
    return sample_rate / better_tau, confidence


# ---------------------------------------------------------------------------
# Buffer-level analysis
# ---------------------------------------------------------------------------


def find_audio_start(
    buf: AudioBuffer,
    threshold: float = START_THRESHOLD,
    max_search: int = START_MAX_SEARCH,
) -> int | None:
    """Index of the first sample louder than ``threshold``, or None."""
    limit = buf.length if max_search <= 0 else min(max_search, buf.length)
    loud = np.flatnonzero(np.abs(buf.samples[:limit]) > threshold)
    return int(loud[0]) if loud.size else None


def _analyse(
    buf: AudioBuffer, start: int, window_size: int, threshold: float
) -> PitchResult:
    window = min(window_size, buf.length - start)
    excerpt = buf.samples[start : start + window]
    pitch, confidence = detect(excerpt, buf.sample_rate, threshold)
    logger.debug(
        "YIN at %d (+%d samples, threshold %.3f): pitch %.2f Hz, confidence %.3f",
        start,
        window,
        threshold,
        pitch,
        confidence,
    )
    if pitch <= 0:
        retry = threshold * 0.5
        retry_pitch, retry_confidence = detect(excerpt, buf.sample_rate, retry)
        if retry_pitch > 0:
            logger.debug("retry at threshold %.3f found %.2f Hz", retry, retry_pitch)
            pitch, confidence, threshold = retry_pitch, retry_confidence, retry
    return PitchResult(
        pitch=pitch,
        confidence=confidence,
        sample_rate=buf.sample_rate,
        num_samples=window,
        buffer_size=window,
        actual_start_sample=start,
        threshold=threshold,
    )


def detect_pitch(
    buf: AudioBuffer,
    start_sample: int = 0,
    window_size: int = 0,
    threshold: float = DEFAULT_THRESHOLD,
) -> PitchResult:
    """Estimate the pitch of a window of ``buf``.

    Args:
        buf: Audio to analyse.
        start_sample: First sample of the window, or ``AUTO_START`` to begin
            at the first non-silent sample.
        window_size: Samples to analyse; 0 selects ``DEFAULT_WINDOW``. The
            window is shortened when the buffer runs out.
        threshold: CMND threshold. Lower is stricter. A miss is retried once
            at half this value.

    Raises:
        ValueError: ``start_sample`` lies outside the buffer.
    """
    auto = start_sample == AUTO_START
    if auto:
        found = find_audio_start(buf)
        if found is None:
            logger.warning("could not find audio start, using sample 0")
            start_sample = 0
        else:
            logger.debug("audio starts at sample %d", found)
            start_sample = found
    if window_size <= 0:
        window_size = DEFAULT_WINDOW
    if not 0 <= start_sample < buf.length:
        raise ValueError(
            f"start sample {start_sample} out of range for {buf.length} samples"
        )

    result = _analyse(buf, start_sample, window_size, threshold)

    # auto-detected starts get one more attempt one second in
    fallback = buf.sample_rate
    if auto and not result.detected and start_sample != fallback and fallback < buf.length:
        logger.debug("no pitch at auto-detected start, retrying at sample %d", fallback)
        result = _analyse(buf, fallback, window_size, threshold)
    return result


def detect_pitch_at_time(
    buf: AudioBuffer,
    start_ms: float,
    duration_ms: float,
    threshold: float = DEFAULT_THRESHOLD,
) -> PitchResult:
    """``detect_pitch`` addressed in milliseconds."""
    start = int(start_ms * buf.sample_rate / 1000)
    window = int(duration_ms * buf.sample_rate / 1000)
    return detect_pitch(buf, start, window, threshold)
