"""Retune a recording to the note of a reference recording.

This is the analyze -> shift half of the capture workflow: detect the pitch
of both recordings, pick the nearest occurrence of the reference's note,
and shift the whole recording by the resulting ratio.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from audiotune.buffer import AudioBuffer
from audiotune.notes import clamp_ratio, frequency_to_midi, map_to_target, note_name
from audiotune.shift import Engine, pitch_shift
from audiotune.yin import AUTO_START, DEFAULT_THRESHOLD, DEFAULT_WINDOW, PitchResult, detect_pitch

logger = logging.getLogger(__name__)

# Offsets (seconds) tried in turn when looking for the reference pitch.
REFERENCE_OFFSETS = (0.0, 0.25, 0.5, 1.0)


@dataclass(frozen=True)
class TuneResult:
    recorded: PitchResult
    reference: PitchResult | None
    target_frequency: float | None
    ratio: float
    output: AudioBuffer | None

    def to_dict(self) -> dict:
        target_midi = (
            frequency_to_midi(self.target_frequency) if self.target_frequency else None
        )
        return {
            "recorded": self.recorded.to_dict(),
            "reference": self.reference.to_dict() if self.reference else None,
            "target_frequency": self.target_frequency,
            "target_note": note_name(target_midi) if target_midi is not None else None,
            "ratio": self.ratio,
            "output_samples": self.output.length if self.output is not None else None,
        }


def detect_reference_pitch(
    buf: AudioBuffer,
    window_size: int = DEFAULT_WINDOW,
    threshold: float = DEFAULT_THRESHOLD,
) -> PitchResult | None:
    """Try each of ``REFERENCE_OFFSETS`` until a pitch is found.

    Returns the first detection, the last attempt if none detected, or None
    if the buffer is shorter than every offset.
    """
    result = None
    for offset in REFERENCE_OFFSETS:
        start = int(offset * buf.sample_rate)
        if start >= buf.length:
            break
        result = detect_pitch(buf, start, window_size, threshold)
        if result.detected:
            break
    return result


def tune(
    recorded: AudioBuffer,
    reference: AudioBuffer,
    engine: Engine | str = Engine.PHASE_VOCODER,
    start_sample: int = AUTO_START,
    window_size: int = DEFAULT_WINDOW,
    threshold: float = DEFAULT_THRESHOLD,
    **options,
) -> TuneResult:
    """Shift ``recorded`` onto the note of ``reference``.

    The ratio falls back to 1.0 when either pitch is not detected or no
    target note exists; the recording is still run through the engine.
    """
    rec = detect_pitch(recorded, start_sample, window_size, threshold)
    ref = None
    target = None
    ratio = 1.0
    if not rec.detected:
        logger.warning("no pitch detected in recording, leaving pitch unchanged")
    else:
        ref = detect_reference_pitch(reference, window_size, threshold)
        if ref is None or not ref.detected:
            logger.warning("no pitch detected in reference, leaving pitch unchanged")
        else:
            target = map_to_target(rec.pitch, ref.pitch)
            if target is not None:
                ratio = target / rec.pitch
            logger.debug(
                "recorded %.2f Hz, reference %.2f Hz, target %s, ratio %.4f",
                rec.pitch,
                ref.pitch,
                f"{target:.2f} Hz" if target else "none",
                ratio,
            )
    ratio = clamp_ratio(ratio)
    output = pitch_shift(recorded, ratio, engine, **options)
    return TuneResult(
        recorded=rec,
        reference=ref,
        target_frequency=target,
        ratio=ratio,
        output=output,
    )
