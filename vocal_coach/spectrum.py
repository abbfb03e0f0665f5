"""
Magnitude spectrum of a single frame (radix-2 FFT), used for the spectral
centroid in diction scoring.
"""

import math

import numpy as np


def _next_pow2(n: int) -> int:
    size = 1
    while size < n:
        size <<= 1
    return size


def _bit_reverse_indices(n: int) -> np.ndarray:
    bits = n.bit_length() - 1
    idx = np.arange(n)
    rev = np.zeros(n, dtype=np.int64)
    for b in range(bits):
        rev |= ((idx >> b) & 1) << (bits - 1 - b)
    return rev


def compute_spectrum(frame) -> tuple[np.ndarray, int]:
    """Hann-windowed magnitude spectrum.

    The frame is zero-padded to the next power of two; the window covers
    only the samples actually present.

    Returns:
        (magnitudes for bins 0 .. size/2 - 1, padded size)
    """
    buf = np.asarray(frame, dtype=np.float64).ravel()
    length = buf.size
    size = _next_pow2(max(1, length))

    x = np.zeros(size, dtype=np.complex128)
    if length == 1:
        x[0] = buf[0]
    elif length > 1:
        i = np.arange(length)
        window = 0.5 * (1 - np.cos(2 * math.pi * i / (length - 1)))
        x[:length] = buf * window

    x = x[_bit_reverse_indices(size)]

    # Butterfly passes, in place on contiguous blocks of each stage
    span = 2
    while span <= size:
        half = span // 2
        twiddle = np.exp(-2j * math.pi * np.arange(half) / span)
        blocks = x.reshape(-1, span)
        even = blocks[:, :half].copy()
        odd = blocks[:, half:] * twiddle
        blocks[:, :half] = even + odd
        blocks[:, half:] = even - odd
        span *= 2

    return np.abs(x[: size // 2]), size


def spectral_centroid(frame, sample_rate: int) -> float:
    """Magnitude-weighted mean frequency in Hz; 0 for an empty or silent frame."""
    mags, size = compute_spectrum(frame)
    total = float(np.sum(mags))
    if mags.size == 0 or total <= 0:
        return 0.0
    freqs = np.arange(mags.size) * sample_rate / size
    return float(np.sum(freqs * mags) / total)
