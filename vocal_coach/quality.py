"""
Recording quality checks: mic calibration stats and near-silence detection.
"""

import logging
import math
from typing import Optional

import numpy as np

from vocal_coach.alignment import DEFAULT_STEP_SEC, compute_envelope
from vocal_coach.models import AudioSignal, AudioStats, CalibrationResult, SilenceReport
from vocal_coach.stats import percentile

logger = logging.getLogger(__name__)

CLIP_LEVEL = 0.98
QUIET_RMS = 0.012
MAX_PEAK = 0.98
MAX_CLIP_PCT = 0.02
MAX_NOISE_FLOOR = 0.02
MIN_SNR_DB = 10.0
NOISE_PERCENTILE = 0.1
CLEAN_SNR_DB = 60.0
NEAR_SILENT_PCT = 0.7


class AudioStatsAccumulator:
    """Collects level statistics from frames pushed one at a time (e.g. a mic check)."""

    def __init__(self):
        self._frame_rms: list[float] = []
        self._sample_count = 0
        self._clip_count = 0
        self._peak = 0.0

    def push(self, frame) -> None:
        buf = np.asarray(frame, dtype=np.float64).ravel()
        if buf.size == 0:
            return
        self._frame_rms.append(float(np.sqrt(np.mean(buf * buf))))
        magnitude = np.abs(buf)
        self._peak = max(self._peak, float(magnitude.max()))
        self._clip_count += int(np.count_nonzero(magnitude >= CLIP_LEVEL))
        self._sample_count += buf.size

    def finalize(self) -> AudioStats:
        if not self._frame_rms:
            return AudioStats()
        mean_rms = sum(self._frame_rms) / len(self._frame_rms)
        noise = percentile(self._frame_rms, NOISE_PERCENTILE)
        if noise > 0:
            snr = 20 * math.log10(max(1e-6, mean_rms) / max(1e-6, noise))
        else:
            snr = CLEAN_SNR_DB
        return AudioStats(
            peak=self._peak,
            rms=mean_rms,
            clip_pct=self._clip_count / self._sample_count,
            noise_floor=noise,
            snr_db=snr,
            frame_count=len(self._frame_rms),
        )


def evaluate_calibration(stats: AudioStats) -> CalibrationResult:
    """Turn mic-check stats into pass/fail plus what to fix."""
    warnings = []
    guidance = []
    if stats.rms < QUIET_RMS:
        warnings.append("Input too quiet.")
        guidance.append("Move closer to the mic or increase input gain.")
    if stats.peak >= MAX_PEAK or stats.clip_pct > MAX_CLIP_PCT:
        warnings.append("Clipping detected.")
        guidance.append("Lower input gain or back away from the mic.")
    if stats.noise_floor > MAX_NOISE_FLOOR:
        warnings.append("Background noise is high.")
        guidance.append("Try a quieter room or reduce ambient noise.")
    if stats.snr_db < MIN_SNR_DB:
        warnings.append("Low signal-to-noise ratio.")
        guidance.append("Project louder or reduce noise.")
    if warnings:
        logger.info("Calibration failed: %s", " ".join(warnings))
    return CalibrationResult(ok=not warnings, warnings=tuple(warnings), guidance=tuple(guidance))


def summarize_stats(stats: Optional[AudioStats]) -> Optional[str]:
    if stats is None:
        return None
    return (
        f"rms {stats.rms:.3f}, peak {stats.peak:.2f}, snr {stats.snr_db:.1f}dB, "
        f"noise {stats.noise_floor:.3f}, clip {stats.clip_pct * 100:.1f}%"
    )


def analyze_silence(
    signal: AudioSignal,
    window_sec: float = DEFAULT_STEP_SEC,
    threshold: float = QUIET_RMS,
    near_silent_pct: float = NEAR_SILENT_PCT,
) -> SilenceReport:
    """Share of short windows at or below *threshold*.

    An empty recording counts as fully silent.
    """
    envelope = compute_envelope(signal, window_sec)
    if envelope.size == 0:
        return SilenceReport(silent_pct=1.0, near_silent=True, window_count=0)
    silent_pct = float(np.count_nonzero(envelope <= threshold)) / envelope.size
    report = SilenceReport(
        silent_pct=silent_pct,
        mean_rms=float(envelope.mean()),
        peak_rms=float(envelope.max()),
        near_silent=silent_pct >= near_silent_pct,
        window_count=int(envelope.size),
    )
    if report.near_silent:
        logger.warning("Recording is near-silent (%.0f%% silent windows)", silent_pct * 100)
    return report
