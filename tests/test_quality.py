"""
Unit tests for quality.py - calibration stats and silence detection.
"""

import numpy as np
import pytest

from conftest import make_tone
from vocal_coach.models import AudioSignal, AudioStats
from vocal_coach.quality import AudioStatsAccumulator, analyze_silence, evaluate_calibration, summarize_stats


class TestAudioStatsAccumulator:
    """Test frame-by-frame level statistics."""

    def test_empty(self):
        """Test no frames give default stats."""
        assert AudioStatsAccumulator().finalize() == AudioStats()

    def test_sine_frames(self):
        """Test steady frames report their RMS, peak and a clean SNR."""
        acc = AudioStatsAccumulator()
        for _ in range(10):
            acc.push(make_tone(440, 0.05, amplitude=0.5))
        stats = acc.finalize()
        assert stats.frame_count == 10
        assert stats.rms == pytest.approx(0.5 / np.sqrt(2), rel=0.02)
        assert stats.peak == pytest.approx(0.5, rel=0.01)
        assert stats.clip_pct == 0.0
        assert stats.snr_db == pytest.approx(0.0, abs=0.5)

    def test_silent_noise_floor(self):
        """Test a zero noise floor reports the clean SNR."""
        acc = AudioStatsAccumulator()
        for _ in range(9):
            acc.push(np.zeros(512))
        acc.push(make_tone(440, 0.05))
        stats = acc.finalize()
        assert stats.noise_floor == 0.0
        assert stats.snr_db == 60.0

    def test_clipping_counted(self):
        """Test samples at full scale count as clipped."""
        acc = AudioStatsAccumulator()
        acc.push(np.array([1.0, -1.0, 0.1, 0.2]))
        assert acc.finalize().clip_pct == pytest.approx(0.5)


class TestCalibration:
    """Test evaluate_calibration."""

    def test_clean(self):
        """Test healthy levels pass."""
        result = evaluate_calibration(AudioStats(peak=0.6, rms=0.1, noise_floor=0.005, snr_db=26.0))
        assert result.ok is True
        assert result.warnings == ()

    def test_quiet_and_noisy(self):
        """Test every failing check adds a warning and its guidance."""
        result = evaluate_calibration(AudioStats(peak=0.05, rms=0.005, noise_floor=0.03, snr_db=4.0))
        assert result.ok is False
        assert result.warnings == ("Input too quiet.", "Background noise is high.", "Low signal-to-noise ratio.")
        assert len(result.guidance) == 3

    def test_clipping(self):
        """Test a full-scale peak is reported as clipping."""
        result = evaluate_calibration(AudioStats(peak=1.0, rms=0.3, noise_floor=0.001, snr_db=40.0))
        assert result.warnings == ("Clipping detected.",)
        assert result.guidance == ("Lower input gain or back away from the mic.",)

    def test_summary(self):
        """Test the one-line summary."""
        assert summarize_stats(None) is None
        text = summarize_stats(AudioStats(rms=0.1, peak=0.5, snr_db=20.0, noise_floor=0.01, clip_pct=0.001))
        assert text == "rms 0.100, peak 0.50, snr 20.0dB, noise 0.010, clip 0.1%"


class TestSilence:
    """Test analyze_silence."""

    def test_empty(self):
        """Test an empty recording counts as fully silent."""
        report = analyze_silence(AudioSignal(samples=np.zeros(0), sample_rate=22050))
        assert report.silent_pct == 1.0
        assert report.near_silent is True
        assert report.window_count == 0

    def test_digital_silence(self, silence):
        """Test zeros are near-silent."""
        report = analyze_silence(silence)
        assert report.silent_pct == 1.0
        assert report.near_silent is True
        assert report.window_count == 20

    def test_sine(self, sine_220):
        """Test a sung tone is not near-silent."""
        report = analyze_silence(sine_220)
        assert report.silent_pct == 0.0
        assert report.near_silent is False
        assert report.peak_rms == pytest.approx(0.354, abs=0.01)

    def test_mostly_silent(self, sample_rate):
        """Test a short blip in a long silence is still near-silent."""
        audio = np.concatenate([make_tone(220, 0.2, sample_rate), np.zeros(sample_rate * 2, dtype=np.float32)])
        report = analyze_silence(AudioSignal(samples=audio, sample_rate=sample_rate))
        assert report.silent_pct == pytest.approx(40 / 44)
        assert report.near_silent is True
