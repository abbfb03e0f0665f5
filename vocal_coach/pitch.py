"""
Time-domain pitch estimation for single audio frames.

The estimator is autocorrelation based: silence is rejected by RMS, the
frame is trimmed at the clip threshold, and the first strong period after
the zero-lag peak is refined with a parabola.
"""

import math

import numpy as np

from vocal_coach.stats import rms

VOICED_RMS_FLOOR = 0.01
CLIP_THRESHOLD = 0.2

NOTE_NAMES = ['C', 'C#', 'D', 'D#', 'E', 'F', 'F#', 'G', 'G#', 'A', 'A#', 'B']


def detect_pitch(frame, sample_rate: int) -> float:
    """Estimate the fundamental frequency of one frame.

    Args:
        frame:       1-D buffer of samples.
        sample_rate: Sample rate in Hz.

    Returns:
        F0 in Hz, or 0.0 when the frame is silent or no period was found.
    """
    buf = np.asarray(frame, dtype=np.float64)
    size = buf.size
    if size == 0 or rms(buf) < VOICED_RMS_FLOOR:
        return 0.0

    # --- Trim at the clip threshold ---
    half = (size + 1) // 2  # indices i < size / 2
    quiet = np.abs(buf) < CLIP_THRESHOLD
    r1 = 0
    head = np.nonzero(quiet[:half])[0]
    if head.size:
        r1 = int(head[0])
    r2 = size - 1
    for i in range(1, half):
        if quiet[size - i]:
            r2 = size - i
            break
    trimmed = buf[r1:r2]
    n = trimmed.size
    if n < 2:
        return 0.0

    # --- Autocorrelation for every lag, normalized by lag 0 ---
    corr = np.correlate(trimmed, trimmed, mode="full")[n - 1:]
    if corr[0] > 0:
        corr = corr / corr[0]

    # Skip the zero-lag peak: walk down to the first local minimum.
    rising = np.nonzero(corr[:-1] <= corr[1:])[0]
    d = int(rising[0]) if rising.size else n - 1

    max_pos = d + int(np.argmax(corr[d:]))
    if corr[max_pos] <= -1 or max_pos <= 0:
        return 0.0

    # --- Parabolic refinement ---
    x1 = corr[max_pos - 1]
    x2 = corr[max_pos]
    x3 = corr[max_pos + 1] if max_pos + 1 < n else 0.0
    a = (x1 + x3 - 2 * x2) / 2
    b = (x3 - x1) / 2
    refined = max_pos - b / (2 * a) if a != 0 else float(max_pos)
    if refined <= 0:
        return 0.0
    return float(sample_rate / refined)


def cents_off(reference_hz: float, actual_hz: float) -> float:
    """Signed distance in cents from reference to actual; 0 if either is unusable."""
    if reference_hz is None or actual_hz is None or reference_hz <= 0 or actual_hz <= 0:
        return 0.0
    return 1200.0 * math.log2(actual_hz / reference_hz)


def hz_to_midi(freq_hz: float) -> float:
    """Continuous MIDI pitch (A4 = 69)."""
    return 69.0 + 12.0 * math.log2(freq_hz / 440.0)


def midi_to_note_name(midi: float) -> str:
    """Name of the nearest note, e.g. 60.2 -> 'C4'."""
    rounded = int(math.floor(midi + 0.5))
    return f"{NOTE_NAMES[rounded % 12]}{rounded // 12 - 1}"
