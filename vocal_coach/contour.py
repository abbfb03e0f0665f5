"""
Pitch contour extraction and contour-level metrics.

A contour is the per-hop pitch track of one signal range; the metrics reduce
it to scalar descriptors (spread, drift, jitter, vibrato) and a 0-100
stability score.
"""

import logging
import math
from typing import Optional

import numpy as np

from vocal_coach.models import AudioSignal, ContourMetrics, PitchContour, PitchFrame
from vocal_coach.pitch import detect_pitch
from vocal_coach.stats import clamp_score, linear_slope, median, rms, stddev

logger = logging.getLogger(__name__)

RMS_FLOOR = 0.008
DEFAULT_HOP_SEC = 0.02
DEFAULT_FRAME_SEC = 0.04
MIN_FRAME_SAMPLES = 1024
LOW_CONFIDENCE_VOICED_PCT = 0.25
VIBRATO_MIN_HZ = 3.0
VIBRATO_MAX_HZ = 9.0


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

def extract_contour(
    signal: AudioSignal,
    start_sec: float = 0.0,
    end_sec: Optional[float] = None,
    hop_sec: float = DEFAULT_HOP_SEC,
    frame_sec: float = DEFAULT_FRAME_SEC,
) -> PitchContour:
    """Slide a frame over [start_sec, end_sec) and estimate pitch per hop.

    Frames at or below the RMS floor are marked unvoiced without running
    the pitch estimator. Frame times are relative to *start_sec*.
    """
    sr = signal.sample_rate
    samples = signal.samples
    frame_size = max(MIN_FRAME_SAMPLES, int(round(frame_sec * sr)))
    hop = max(1, int(math.floor(hop_sec * sr)))
    start = max(0, int(math.floor(start_sec * sr)))
    end = len(samples) if end_sec is None else min(len(samples), int(math.floor(end_sec * sr)))

    frames: list[PitchFrame] = []
    i = start
    while i + frame_size <= end:
        window = samples[i:i + frame_size]
        level = rms(window)
        f0 = detect_pitch(window, sr) if level > RMS_FLOOR else 0.0
        t = (i - start) / sr
        if f0 > 0:
            frames.append(PitchFrame(t=t, f0=f0, voiced=True, rms=level))
        else:
            frames.append(PitchFrame(t=t, f0=None, voiced=False, rms=level))
        i += hop

    return PitchContour(frames=tuple(frames), sample_rate=sr, hop_sec=hop / sr)


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

def _vibrato_rate(cents: np.ndarray, hop_sec: float) -> float:
    if cents.size <= 8 or hop_sec <= 0:
        return 0.0
    centered = cents - cents.mean()
    min_lag = max(1, int(math.floor(1 / (VIBRATO_MAX_HZ * hop_sec))))
    max_lag = max(min_lag + 1, int(math.floor(1 / (VIBRATO_MIN_HZ * hop_sec))))
    best_lag = 0
    best_corr = 0.0
    for lag in range(min_lag, max_lag + 1):
        if lag >= centered.size:
            break
        corr = float(np.sum(centered[:-lag] * centered[lag:]))
        if corr > best_corr:
            best_corr = corr
            best_lag = lag
    if best_lag == 0:
        return 0.0
    return 1.0 / (best_lag * hop_sec)


def compute_contour_metrics(contour: PitchContour) -> ContourMetrics:
    """Reduce a contour to ContourMetrics, computed over voiced frames only."""
    total = len(contour.frames)
    voiced = contour.voiced_frames
    if not voiced:
        return ContourMetrics()

    voiced_pct = len(voiced) / max(1, total)
    f0s = [f.f0 for f in voiced]
    med = median(f0s)
    cents = np.array([1200.0 * math.log2(f / med) for f in f0s])
    times = [f.t for f in voiced]

    std = stddev(cents)
    ordered = np.sort(cents)
    n = ordered.size
    iqr = float(ordered[int(math.floor(n * 0.75))] - ordered[int(math.floor(n * 0.25))])
    drift = linear_slope(times, cents)
    jitter = stddev(np.diff(cents)) if n > 1 else 0.0
    vibrato = _vibrato_rate(cents, contour.hop_sec)

    stability = clamp_score(100 - 0.9 * std - 0.6 * jitter - 2.5 * abs(drift))

    return ContourMetrics(
        voiced_pct=voiced_pct,
        median_f0_hz=med,
        cents_std_dev=std,
        cents_iqr=iqr,
        drift_cents_per_sec=drift,
        vibrato_rate_hz=vibrato,
        jitter_cents_rms=jitter,
        stability_score=stability,
        low_confidence=voiced_pct < LOW_CONFIDENCE_VOICED_PCT,
    )
