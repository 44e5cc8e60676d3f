"""WAV container codec.

Reads 16-bit PCM and 32-bit IEEE float files (mono or stereo, stereo is
downmixed) and writes the 44-byte canonical mono header followed by either
encoding. Capture code that streams samples of unknown length uses
``WavWriter`` or ``patch_header`` to fix up the size fields afterwards.
"""

from __future__ import annotations

import io
import logging
import os
import struct
from dataclasses import dataclass
from typing import BinaryIO

import numpy as np

from audiotune.buffer import AudioBuffer
from audiotune.errors import AudioIOError, FormatError

logger = logging.getLogger(__name__)

WAVE_FORMAT_PCM = 1
WAVE_FORMAT_IEEE_FLOAT = 3

HEADER_SIZE = 44
FMT_CHUNK_SIZE = 16

# format name -> (format tag, bits per sample)
FORMATS: dict[str, tuple[int, int]] = {
    "pcm16": (WAVE_FORMAT_PCM, 16),
    "float": (WAVE_FORMAT_IEEE_FLOAT, 32),
}

_SUPPORTED = set(FORMATS.values())

# Data sizes a capture writes before it knows the real length.
_PLACEHOLDER_SIZES = (0, 0xFFFFFFFF)
_MAX_RIFF_DATA = 0xFFFFFFFF - (HEADER_SIZE - 8)

_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")
_CHUNK = struct.Struct("<4sI")
_FMT = struct.Struct("<HHIIHH")


@dataclass(frozen=True)
class WavFormat:
    """Fields of a ``fmt `` chunk."""

    audio_format: int
    channels: int
    sample_rate: int
    byte_rate: int
    block_align: int
    bits_per_sample: int

    @property
    def bytes_per_sample(self) -> int:
        return self.bits_per_sample // 8

    @property
    def name(self) -> str:
        for name, spec in FORMATS.items():
            if spec == (self.audio_format, self.bits_per_sample):
                return name
        return f"tag{self.audio_format}/{self.bits_per_sample}bit"


def _format_spec(format: str) -> tuple[int, int]:
    try:
        return FORMATS[format]
    except KeyError:
        raise ValueError(
            f"Unknown format {format!r}, valid names: {list(FORMATS)}"
        ) from None


# ---------------------------------------------------------------------------
# Header encoding
# ---------------------------------------------------------------------------


def encode_header(
    num_frames: int, sample_rate: int, format: str = "pcm16", channels: int = 1
) -> bytes:
    """Build the 44-byte canonical header for ``num_frames`` frames."""
    tag, bits = _format_spec(format)
    block_align = channels * (bits // 8)
    data_size = num_frames * block_align
    if num_frames < 0 or data_size > _MAX_RIFF_DATA:
        raise FormatError(f"{num_frames} frames cannot be described by a RIFF header")
    return _HEADER.pack(
        b"RIFF",
        36 + data_size,
        b"WAVE",
        b"fmt ",
        FMT_CHUNK_SIZE,
        tag,
        channels,
        sample_rate,
        sample_rate * block_align,
        block_align,
        bits,
        b"data",
        data_size,
    )


def patch_header(
    stream: BinaryIO, num_frames: int, sample_rate: int, format: str = "pcm16"
) -> None:
    """Rewrite the header at offset 0 with the true frame count.

    The stream position is restored afterwards so data writes can continue
    where they left off.
    """
    header = encode_header(num_frames, sample_rate, format)
    pos = stream.tell()
    try:
        stream.seek(0)
        stream.write(header)
    finally:
        stream.seek(pos)


# ---------------------------------------------------------------------------
# Header parsing
# ---------------------------------------------------------------------------


def _read_exact(stream: BinaryIO, size: int, what: str) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise FormatError(f"Unexpected end of file while reading {what}")
    return data


def _parse_fmt(body: bytes) -> WavFormat:
    fmt = WavFormat(*_FMT.unpack_from(body))
    if (fmt.audio_format, fmt.bits_per_sample) not in _SUPPORTED:
        raise FormatError(
            f"Unsupported audio format (format={fmt.audio_format}, "
            f"bits={fmt.bits_per_sample}); only 16-bit PCM and 32-bit float are read"
        )
    if fmt.channels not in (1, 2):
        raise FormatError(f"Unsupported channel count {fmt.channels}")
    if fmt.sample_rate <= 0:
        raise FormatError("Sample rate is zero")
    if fmt.block_align != fmt.channels * fmt.bytes_per_sample:
        raise FormatError(
            f"Block align {fmt.block_align} does not match "
            f"{fmt.channels} channel(s) x {fmt.bytes_per_sample} bytes"
        )
    if fmt.byte_rate != fmt.sample_rate * fmt.block_align:
        logger.warning(
            "byte rate %d disagrees with sample rate x block align (%d), ignoring",
            fmt.byte_rate,
            fmt.sample_rate * fmt.block_align,
        )
    return fmt


def read_header(stream: BinaryIO) -> tuple[WavFormat, int]:
    """Parse headers up to the ``data`` chunk.

    Returns the format and the declared data size, leaving ``stream``
    positioned at the first data byte. Chunks other than ``fmt `` and
    ``data`` are skipped.
    """
    riff, _riff_size, wave = struct.unpack("<4sI4s", _read_exact(stream, 12, "RIFF header"))
    if riff != b"RIFF" or wave != b"WAVE":
        raise FormatError("Not a valid WAV file (missing RIFF/WAVE magic)")

    fmt: WavFormat | None = None
    while True:
        raw = stream.read(_CHUNK.size)
        if len(raw) < _CHUNK.size:
            break
        chunk_id, size = _CHUNK.unpack(raw)
        if chunk_id == b"fmt ":
            if size < FMT_CHUNK_SIZE:
                raise FormatError(f"fmt chunk too small ({size} bytes)")
            fmt = _parse_fmt(_read_exact(stream, size, "fmt chunk"))
            if size & 1:
                stream.seek(1, io.SEEK_CUR)
        elif chunk_id == b"data":
            if fmt is None:
                raise FormatError("data chunk precedes fmt chunk")
            return fmt, size
        else:
            logger.debug("skipping %r chunk (%d bytes)", chunk_id, size)
            stream.seek(size + (size & 1), io.SEEK_CUR)

    if fmt is None:
        raise FormatError("No fmt chunk found")
    raise FormatError("No data chunk found")


def _remaining(stream: BinaryIO) -> int:
    pos = stream.tell()
    end = stream.seek(0, io.SEEK_END)
    stream.seek(pos)
    return end - pos


# ---------------------------------------------------------------------------
# Sample conversion
# ---------------------------------------------------------------------------


def decode_samples(raw: bytes, fmt: WavFormat) -> np.ndarray:
    """Convert interleaved payload bytes to normalized mono float32."""
    if fmt.audio_format == WAVE_FORMAT_PCM:
        data = np.frombuffer(raw, dtype="<i2").astype(np.float32) / 32768.0
    else:
        data = np.frombuffer(raw, dtype="<f4").astype(np.float32)
    if fmt.channels == 2:
        data = data.reshape(-1, 2).mean(axis=1, dtype=np.float32)
    return data


def encode_samples(samples: np.ndarray, format: str = "pcm16") -> bytes:
    """Convert float samples to payload bytes in the given encoding."""
    tag, _bits = _format_spec(format)
    samples = np.asarray(samples, dtype=np.float64)
    if tag == WAVE_FORMAT_PCM:
        ints = np.clip(np.round(samples * 32768.0), -32768, 32767)
        return ints.astype("<i2").tobytes()
    return samples.astype("<f4").tobytes()


# ---------------------------------------------------------------------------
# Whole-buffer load/save
# ---------------------------------------------------------------------------


def read_wav(stream: BinaryIO) -> AudioBuffer:
    """Decode a WAV file object into a mono AudioBuffer."""
    fmt, declared = read_header(stream)
    available = _remaining(stream)
    if declared in _PLACEHOLDER_SIZES:
        size = available
    else:
        size = min(declared, available)
        if declared > available:
            logger.warning(
                "data chunk declares %d bytes but only %d remain, truncating",
                declared,
                available,
            )
    size -= size % fmt.block_align
    raw = _read_exact(stream, size, "sample data")
    logger.debug(
        "WAV info: %d Hz, %d channel(s), %d bits, format %d, %d frames",
        fmt.sample_rate,
        fmt.channels,
        fmt.bits_per_sample,
        fmt.audio_format,
        size // fmt.block_align,
    )
    return AudioBuffer(decode_samples(raw, fmt), fmt.sample_rate)


def write_wav(stream: BinaryIO, buf: AudioBuffer, format: str = "float") -> None:
    """Encode a mono AudioBuffer as a canonical WAV file."""
    stream.write(encode_header(buf.length, buf.sample_rate, format))
    stream.write(encode_samples(buf.samples, format))


def load_audio(path: str | os.PathLike) -> AudioBuffer:
    """Load a WAV file as a mono AudioBuffer.

    Raises:
        FormatError: the file is not a supported WAV file.
        AudioIOError: the file could not be opened or read.
    """
    try:
        with open(path, "rb") as f:
            return read_wav(f)
    except OSError as exc:
        raise AudioIOError(f"Cannot read {os.fspath(path)}: {exc.strerror or exc}") from exc


def save_audio(path: str | os.PathLike, buf: AudioBuffer, format: str = "float") -> None:
    """Save an AudioBuffer as a mono WAV file (``format`` is "float" or "pcm16")."""
    _format_spec(format)
    try:
        with open(path, "wb") as f:
            write_wav(f, buf, format)
    except OSError as exc:
        raise AudioIOError(f"Cannot write {os.fspath(path)}: {exc.strerror or exc}") from exc


def read_info(path: str | os.PathLike) -> tuple[WavFormat, int]:
    """Return ``(format, num_frames)`` without decoding the samples."""
    try:
        with open(path, "rb") as f:
            fmt, declared = read_header(f)
            available = _remaining(f)
    except OSError as exc:
        raise AudioIOError(f"Cannot read {os.fspath(path)}: {exc.strerror or exc}") from exc
    size = available if declared in _PLACEHOLDER_SIZES else min(declared, available)
    return fmt, size // fmt.block_align


# ---------------------------------------------------------------------------
# Streaming writer
# ---------------------------------------------------------------------------


class WavWriter:
    """Write a mono WAV file incrementally.

    A placeholder header sized for ``expected_frames`` is written on open;
    ``close()`` patches it with the number of frames actually written.

    Example:
        >>> with WavWriter("rec.wav", 48000, format="pcm16") as w:
        ...     for block in blocks:
        ...         w.write(block)
    """

    def __init__(
        self,
        path: str | os.PathLike,
        sample_rate: int,
        format: str = "pcm16",
        expected_frames: int = 0,
    ) -> None:
        _format_spec(format)
        self.path = os.fspath(path)
        self.sample_rate = sample_rate
        self.format = format
        self.frames_written = 0
        try:
            self._file: BinaryIO | None = open(self.path, "wb")
            self._file.write(encode_header(expected_frames, sample_rate, format))
        except OSError as exc:
            raise AudioIOError(f"Cannot write {self.path}: {exc.strerror or exc}") from exc

    @property
    def closed(self) -> bool:
        return self._file is None

    def write(self, samples) -> int:
        """Append float samples; returns the number of frames written."""
        if self._file is None:
            raise ValueError("write to closed WavWriter")
        data = np.asarray(samples, dtype=np.float64).ravel()
        try:
            self._file.write(encode_samples(data, self.format))
        except OSError as exc:
            raise AudioIOError(f"Cannot write {self.path}: {exc.strerror or exc}") from exc
        self.frames_written += data.size
        return data.size

    def close(self) -> None:
        if self._file is None:
            return
        f, self._file = self._file, None
        try:
            patch_header(f, self.frames_written, self.sample_rate, self.format)
        except OSError as exc:
            raise AudioIOError(f"Cannot write {self.path}: {exc.strerror or exc}") from exc
        finally:
            f.close()

    def __enter__(self) -> WavWriter:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
