"""Windowing and the fixed-size real FFT used by the phase vocoder."""

from __future__ import annotations

import numpy as np


def hann(size: int) -> np.ndarray:
    """Symmetric Hann window ``0.5 * (1 - cos(2*pi*n / (N - 1)))``."""
    if size == 1:
        return np.ones(1)
    n = np.arange(size)
    return 0.5 * (1.0 - np.cos(2.0 * np.pi * n / (size - 1)))


class FFTPlan:
    """Real-input FFT of one fixed power-of-two size, backed by ``numpy.fft``.

    ``forward`` maps ``size`` real samples to the ``size // 2 + 1`` bins from
    DC to Nyquist; ``inverse`` takes those bins back to real samples, so the
    conjugate-symmetric upper half is never stored.

    Example:
        >>> plan = FFTPlan(2048)
        >>> spectrum = plan.forward(frame)
        >>> frame_again = plan.inverse(spectrum)
    """

    def __init__(self, size: int = 2048) -> None:
        if size < 2 or size & (size - 1):
            raise ValueError(f"FFT size must be a power of two >= 2, got {size}")
        self.size = size
        self.bins = size // 2 + 1

    def forward(self, frame) -> np.ndarray:
        frame = np.asarray(frame, dtype=np.float64)
        if frame.shape != (self.size,):
            raise ValueError(f"expected {self.size} samples, got shape {frame.shape}")
        return np.fft.rfft(frame)

    def inverse(self, spectrum) -> np.ndarray:
        """Real frame of ``size`` samples, scaled by ``1/size``."""
        spectrum = np.asarray(spectrum)
        if spectrum.shape != (self.bins,):
            raise ValueError(f"expected {self.bins} bins, got shape {spectrum.shape}")
        return np.fft.irfft(spectrum, self.size)
