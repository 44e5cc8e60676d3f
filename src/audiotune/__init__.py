"""
audiotune - pitch detection and duration-preserving pitch shifting.

Example usage:
    >>> import audiotune
    >>> rec = audiotune.load_audio("rec.wav")
    >>> ref = audiotune.load_audio("reference.wav")
    >>> ratio = audiotune.compute_shift_ratio(
    ...     audiotune.detect_pitch(rec).pitch, audiotune.detect_pitch(ref).pitch
    ... )
    >>> out = audiotune.pitch_shift(rec, ratio, engine="psola")
    >>> audiotune.save_audio("shifted.wav", out, format="pcm16")
"""

from audiotune.buffer import (
    AudioBuffer,
    db_to_gain,
    gain_to_db,
    normalize_peak,
    peak,
    synth_wave,
)
from audiotune.errors import AudioIOError, AudioTuneError, FormatError, ShiftError
from audiotune.fft import FFTPlan, hann
from audiotune.notes import (
    MAX_RATIO,
    MIN_RATIO,
    clamp_ratio,
    compute_shift_ratio,
    frequency_to_midi,
    map_to_target,
    midi_to_frequency,
    note_name,
    pitch_class,
    ratio_to_semitones,
    semitones_to_ratio,
)
from audiotune.psola import PitchMarks, PsolaSettings, detect_pitch_marks, psola_shift
from audiotune.shift import Engine, pitch_shift, transpose
from audiotune.tuner import TuneResult, detect_reference_pitch, tune
from audiotune.vocoder import phase_vocoder_shift, wrap_phase
from audiotune.wav import (
    WavFormat,
    WavWriter,
    encode_header,
    load_audio,
    patch_header,
    read_header,
    read_info,
    read_wav,
    save_audio,
    write_wav,
)
from audiotune.yin import (
    AUTO_START,
    PitchResult,
    detect,
    detect_pitch,
    detect_pitch_at_time,
    find_audio_start,
)

__version__ = "0.1.0"


def version() -> str:
    """Get the audiotune version string."""
    return __version__


__all__ = [
    # Version
    "version",
    # Buffers and levels
    "AudioBuffer",
    "gain_to_db",
    "db_to_gain",
    "peak",
    "normalize_peak",
    "synth_wave",
    # Exceptions
    "AudioTuneError",
    "FormatError",
    "AudioIOError",
    "ShiftError",
    # WAV codec
    "WavFormat",
    "WavWriter",
    "load_audio",
    "save_audio",
    "read_wav",
    "write_wav",
    "read_header",
    "read_info",
    "encode_header",
    "patch_header",
    # Pitch detection
    "AUTO_START",
    "PitchResult",
    "detect",
    "detect_pitch",
    "detect_pitch_at_time",
    "find_audio_start",
    # Notes and ratios
    "MIN_RATIO",
    "MAX_RATIO",
    "frequency_to_midi",
    "midi_to_frequency",
    "note_name",
    "pitch_class",
    "map_to_target",
    "compute_shift_ratio",
    "clamp_ratio",
    "semitones_to_ratio",
    "ratio_to_semitones",
    # Engines
    "FFTPlan",
    "hann",
    "wrap_phase",
    "phase_vocoder_shift",
    "PitchMarks",
    "PsolaSettings",
    "detect_pitch_marks",
    "psola_shift",
    "Engine",
    "pitch_shift",
    "transpose",
    # Workflow
    "TuneResult",
    "detect_reference_pitch",
    "tune",
]
