"""
Temporal alignment between a reference and a user recording.

Both signals are reduced to fixed-step RMS envelopes; the offset is the lag
with the best Pearson correlation, with an onset-based fallback when the
envelopes don't correlate well enough.
"""

import logging
import math
from typing import Optional, Sequence

import numpy as np

from vocal_coach.models import AudioSignal, OffsetEstimate
from vocal_coach.stats import clamp, round_half_up

logger = logging.getLogger(__name__)

DEFAULT_STEP_SEC = 0.05
DEFAULT_MAX_OFFSET_MS = 800.0
ACCEPT_CORRELATION = 0.2
ONSET_FRACTION = 0.4
MIN_OVERLAP = 3


def compute_envelope(signal: AudioSignal, step_sec: float = DEFAULT_STEP_SEC) -> np.ndarray:
    """RMS of consecutive non-overlapping windows of *step_sec*."""
    step = max(1, int(round(step_sec * signal.sample_rate)))
    samples = signal.samples.astype(np.float64)
    count = len(samples) // step
    if count == 0:
        return np.zeros(0)
    blocks = samples[: count * step].reshape(count, step)
    return np.sqrt(np.mean(blocks * blocks, axis=1))


def _lag_correlation(a: np.ndarray, b: np.ndarray, lag: int) -> float:
    # pairs (a[i], b[i + lag]) that fall inside both envelopes
    lo = max(0, -lag)
    hi = min(a.size, b.size - lag)
    if hi - lo < MIN_OVERLAP:
        return 0.0
    x = a[lo:hi]
    y = b[lo + lag:hi + lag]
    dx = x - x.mean()
    dy = y - y.mean()
    denom_a = float(np.sum(dx * dx))
    denom_b = float(np.sum(dy * dy))
    if denom_a <= 1e-12 or denom_b <= 1e-12:
        return 0.0
    return float(np.sum(dx * dy)) / math.sqrt(denom_a * denom_b)


def _onset_lag(reference: np.ndarray, recording: np.ndarray) -> Optional[int]:
    ref_peak = float(reference.max())
    rec_peak = float(recording.max())
    if ref_peak <= 0 or rec_peak <= 0:
        return None
    ref_idx = int(np.argmax(reference >= ref_peak * ONSET_FRACTION))
    rec_idx = int(np.argmax(recording >= rec_peak * ONSET_FRACTION))
    return rec_idx - ref_idx


def estimate_offset(
    reference_envelope: Sequence[float],
    recording_envelope: Sequence[float],
    step_sec: float = DEFAULT_STEP_SEC,
    max_offset_ms: float = DEFAULT_MAX_OFFSET_MS,
) -> OffsetEstimate:
    """Estimate how many ms the recording lags the reference.

    Args:
        reference_envelope: RMS envelope of the reference.
        recording_envelope: RMS envelope of the user recording, same step.
        step_sec:           Envelope step in seconds.
        max_offset_ms:      Search window and clamp for the result.

    Returns:
        OffsetEstimate with method ``xcorr``, ``onset`` or ``none``.
    """
    ref = np.asarray(reference_envelope, dtype=np.float64)
    rec = np.asarray(recording_envelope, dtype=np.float64)
    if ref.size == 0 or rec.size == 0:
        return OffsetEstimate(offset_ms=0.0, method="none")

    max_lag = max(1, round_half_up(max_offset_ms / (step_sec * 1000)))
    best_lag = 0
    best_corr = -math.inf
    for lag in range(-max_lag, max_lag + 1):
        corr = _lag_correlation(ref, rec, lag)
        if corr > best_corr:
            best_corr = corr
            best_lag = lag

    if best_corr > ACCEPT_CORRELATION:
        offset = clamp(round_half_up(best_lag * step_sec * 1000), -max_offset_ms, max_offset_ms)
        logger.info("Offset %.0f ms via xcorr (r=%.2f)", offset, best_corr)
        return OffsetEstimate(offset_ms=offset, method="xcorr", correlation=best_corr)

    onset_lag = _onset_lag(ref, rec)
    if onset_lag is not None:
        offset = clamp(round_half_up(onset_lag * step_sec * 1000), -max_offset_ms, max_offset_ms)
        logger.info("Offset %.0f ms via onset fallback (best r=%.2f)", offset, best_corr)
        return OffsetEstimate(offset_ms=offset, method="onset", correlation=max(0.0, best_corr))

    logger.warning("No usable envelope for alignment")
    return OffsetEstimate(offset_ms=0.0, method="none")


def energy_correlation(a: Sequence[float], b: Sequence[float]) -> float:
    """Pearson correlation of two envelopes over their common prefix, clamped to 0..1."""
    n = min(len(a), len(b))
    if n < MIN_OVERLAP:
        return 0.0
    x = np.asarray(a[:n], dtype=np.float64)
    y = np.asarray(b[:n], dtype=np.float64)
    return clamp(_lag_correlation(x, y, 0), 0.0, 1.0)
