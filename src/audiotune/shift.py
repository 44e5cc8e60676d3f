"""Single entry point over the two pitch-shifting engines."""

from __future__ import annotations

import enum
import logging
import math

from audiotune.buffer import AudioBuffer
from audiotune.errors import ShiftError
from audiotune.notes import clamp_ratio, semitones_to_ratio
from audiotune.psola import psola_shift
from audiotune.vocoder import phase_vocoder_shift

logger = logging.getLogger(__name__)


class Engine(enum.Enum):
    PHASE_VOCODER = "phase-vocoder"
    PSOLA = "psola"


ENGINE_NAMES = [e.value for e in Engine]

_ENGINES = {
    Engine.PHASE_VOCODER: phase_vocoder_shift,
    Engine.PSOLA: psola_shift,
}


def resolve_engine(engine: Engine | str) -> Engine:
    """Accept an Engine member or its name ("phase-vocoder", "psola")."""
    if isinstance(engine, Engine):
        return engine
    try:
        return Engine(str(engine).lower().replace("_", "-"))
    except ValueError:
        raise ValueError(
            f"Unknown engine {engine!r}, valid names: {ENGINE_NAMES}"
        ) from None


def pitch_shift(
    buf: AudioBuffer,
    ratio: float,
    engine: Engine | str = Engine.PHASE_VOCODER,
    **options,
) -> AudioBuffer | None:
    """Shift the pitch of ``buf`` by ``ratio`` without changing its length.

    The ratio is clamped to [0.5, 2.0] once, and that value is used for the
    whole call. Extra keyword arguments go to the engine (``fft_size`` and
    ``hop_size`` for the phase vocoder, ``settings`` for PSOLA).

    Returns None when the ratio is NaN or the engine cannot produce a
    result; a partial buffer is never returned.
    """
    engine = resolve_engine(engine)
    if math.isnan(ratio):
        logger.warning("%s pitch shift skipped: ratio is NaN", engine.value)
        return None
    ratio = clamp_ratio(ratio)
    try:
        return _ENGINES[engine](buf, ratio, **options)
    except ShiftError as exc:
        logger.warning("%s pitch shift failed: %s", engine.value, exc)
    except MemoryError:
        logger.error(
            "%s pitch shift ran out of memory for %d samples", engine.value, buf.length
        )
    return None


def transpose(
    buf: AudioBuffer,
    semitones: float,
    engine: Engine | str = Engine.PHASE_VOCODER,
    **options,
) -> AudioBuffer | None:
    """``pitch_shift`` by a number of equal-tempered semitones."""
    return pitch_shift(buf, semitones_to_ratio(semitones), engine, **options)
