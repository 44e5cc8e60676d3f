"""Exception taxonomy for audiotune.

A pitch-detection miss is not an error (see ``PitchResult.detected``), and
out-of-range shift ratios are clamped rather than raised.
"""


class AudioTuneError(Exception):
    """Base class for audiotune library errors."""

    code = 0

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class FormatError(AudioTuneError):
    """Malformed or unsupported WAV data (bad magic, format tag, missing chunk)."""

    code = 1


class AudioIOError(AudioTuneError):
    """Opening, reading or writing an audio file failed."""

    code = 2


class ShiftError(AudioTuneError):
    """A pitch-shifting engine could not produce a result."""

    code = 3
