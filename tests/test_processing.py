"""
Unit tests for processing.py - feature extraction and the full attempt pipeline.
"""

import pytest

from vocal_coach.config import AnalysisConfig
from vocal_coach.contour import extract_contour
from vocal_coach.processing import ContourCache, analyze_attempt, extract_features


class TestContourCache:
    """Test the caller-owned contour cache."""

    def test_get_or_compute(self, sine_220):
        """Test the compute function only runs on a miss."""
        cache = ContourCache()
        calls = []

        def compute():
            calls.append(1)
            return extract_contour(sine_220)

        first = cache.get_or_compute("ref", compute)
        second = cache.get_or_compute("ref", compute)
        assert first is second
        assert len(calls) == 1
        assert (cache.hits, cache.misses) == (1, 1)
        assert "ref" in cache
        cache.clear()
        assert len(cache) == 0


class TestExtractFeatures:
    """Test extract_features."""

    def test_sine(self, sine_220):
        """Test a steady tone is voiced with a one-per-step envelope."""
        features = extract_features(sine_220)
        assert features.metrics.voiced_pct > 0.9
        assert features.metrics.median_f0_hz == pytest.approx(220.0, rel=0.02)
        assert features.envelope.size == 20

    def test_reuses_contour(self, sine_220, silence):
        """Test a supplied contour is used instead of extracting a new one."""
        contour = extract_features(sine_220).contour
        features = extract_features(silence, contour=contour)
        assert features.contour is contour
        assert features.metrics.voiced_pct > 0.9


class TestAnalyzeAttempt:
    """Test analyze_attempt end to end."""

    def test_identical_attempt(self, phrase_signal, reference_words, reference_lines, clean_feedback):
        """Test singing the reference back exactly scores cleanly."""
        result = analyze_attempt(
            phrase_signal, phrase_signal,
            reference_words=reference_words,
            reference_lines=reference_lines,
            word_feedback=clean_feedback,
            pace_ratio=1.0,
        )
        assert result.offset.offset_ms == 0
        assert result.comparison is not None
        assert result.comparison.median_abs_error_cents == 0
        assert len(result.line_results) == 2
        assert result.coach.subscores.word == 100
        assert "pitch" not in result.coach.issue_categories
        assert 0 <= result.overall_score <= 100
        assert len(result.cards) <= 2
        assert result.unified_metrics.word_accuracy_pct == 100
        assert result.unified_metrics.coverage_pct == pytest.approx(2.48 / 2.5)
        assert result.unified_metrics.timing_correlation == pytest.approx(1.0)

    def test_silent_user(self, phrase_signal, silence, reference_lines):
        """Test a silent recording is flagged as a recording quality problem."""
        result = analyze_attempt(phrase_signal, silence, reference_lines=reference_lines)
        assert result.user_metrics.low_confidence is True
        assert result.comparison is None
        assert result.coach.low_confidence is True
        assert result.pitch_coach.low_confidence is True

    def test_practice_mode_changes_score(self, phrase_signal, reference_words, reference_lines):
        """Test the practice mode only reweights the same subscores."""
        full = analyze_attempt(phrase_signal, phrase_signal, reference_words, reference_lines)
        pitch = analyze_attempt(phrase_signal, phrase_signal, reference_words, reference_lines,
                                practice_mode="pitch")
        assert full.coach.subscores == pitch.coach.subscores
        assert pitch.overall_score >= full.overall_score

    def test_reference_contour_cached(self, phrase_signal):
        """Test the reference contour is computed once per id and window size."""
        cache = ContourCache()
        analyze_attempt(phrase_signal, phrase_signal, cache=cache, reference_id="seg-1")
        analyze_attempt(phrase_signal, phrase_signal, cache=cache, reference_id="seg-1")
        assert (cache.hits, cache.misses) == (1, 1)
        assert ("seg-1", 0.02, 0.04) in cache

        analyze_attempt(phrase_signal, phrase_signal, config=AnalysisConfig(hop_sec=0.01),
                        cache=cache, reference_id="seg-1")
        assert len(cache) == 2

    def test_no_reference_id_skips_cache(self, phrase_signal):
        """Test the cache is untouched without a reference id."""
        cache = ContourCache()
        analyze_attempt(phrase_signal, phrase_signal, cache=cache)
        assert len(cache) == 0
