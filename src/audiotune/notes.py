"""Musical pitch helpers: MIDI conversions and shift-ratio computation."""

from __future__ import annotations

import logging
import math

logger = logging.getLogger(__name__)

A4_FREQUENCY = 440.0
A4_MIDI = 69

# Playable range searched for target notes (C0 .. C8).
MIDI_MIN = 12
MIDI_MAX = 108

MIN_RATIO = 0.5
MAX_RATIO = 2.0

NOTE_NAMES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]


def frequency_to_midi(frequency: float) -> int | None:
    """Nearest MIDI note number, or None for non-positive frequencies."""
    if not math.isfinite(frequency) or frequency <= 0:
        return None
    return int(math.floor(A4_MIDI + 12.0 * math.log2(frequency / A4_FREQUENCY) + 0.5))


def midi_to_frequency(midi_note: int) -> float:
    return A4_FREQUENCY * 2.0 ** ((midi_note - A4_MIDI) / 12.0)


def note_name(midi_note: int) -> str:
    """Scientific pitch name, e.g. 69 -> "A4"."""
    return f"{NOTE_NAMES[midi_note % 12]}{midi_note // 12 - 1}"


def pitch_class(frequency: float) -> int | None:
    """Pitch class 0-11 (C=0) of the nearest note."""
    midi = frequency_to_midi(frequency)
    return None if midi is None else midi % 12


def _in_range(frequency: float) -> bool:
    midi = frequency_to_midi(frequency)
    return midi is not None and MIDI_MIN <= midi <= MIDI_MAX


def map_to_target(recorded_hz: float, reference_hz: float) -> float | None:
    """Frequency of the reference's pitch class nearest the recording.

    A recording above the reference moves down to the closest lower
    occurrence of the reference note; one at or below it moves up to the
    closest higher occurrence. Returns None for degenerate input
    (non-positive, non-finite or outside the MIDI range) or when no
    occurrence exists within ``MIDI_MIN..MIDI_MAX``.
    """
    if not (_in_range(recorded_hz) and _in_range(reference_hz)):
        return None
    note_class = frequency_to_midi(reference_hz) % 12

    if recorded_hz > reference_hz:
        octaves = range(8, 0, -1)
    else:
        octaves = range(1, 9)

    for octave in octaves:
        midi = note_class + octave * 12
        if not MIDI_MIN <= midi <= MIDI_MAX:
            continue
        freq = midi_to_frequency(midi)
        if recorded_hz > reference_hz and freq < recorded_hz:
            return freq
        if recorded_hz <= reference_hz and freq > recorded_hz:
            return freq
    return None


def compute_shift_ratio(recorded_hz: float, reference_hz: float) -> float:
    """Ratio ``target / recorded`` that retunes the recording to the reference note.

    Returns exactly 1.0 (no change) when no target can be found.
    """
    target = map_to_target(recorded_hz, reference_hz)
    if target is None:
        logger.warning(
            "no target note for recorded=%.2f Hz, reference=%.2f Hz; using ratio 1.0",
            recorded_hz,
            reference_hz,
        )
        return 1.0
    ratio = target / recorded_hz
    logger.debug(
        "target %.2f Hz (%s), ratio %.4f",
        target,
        note_name(frequency_to_midi(target)),
        ratio,
    )
    return ratio


def clamp_ratio(ratio: float) -> float:
    """Clamp a shift ratio to the range the engines support.

    Zero, negative and infinite ratios clamp to the nearest bound like any
    other out-of-range value. NaN has no nearest bound and raises ValueError.
    """
    if math.isnan(ratio):
        raise ValueError("Pitch ratio is NaN")
    clamped = min(max(ratio, MIN_RATIO), MAX_RATIO)
    if clamped != ratio:
        logger.debug("pitch ratio %.4f clamped to %.4f", ratio, clamped)
    return clamped


def semitones_to_ratio(semitones: float) -> float:
    return 2.0 ** (semitones / 12.0)


def ratio_to_semitones(ratio: float) -> float:
    return 12.0 * math.log2(ratio)
