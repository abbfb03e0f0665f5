"""
Unit tests for drills.py - focus selection and the drill session state machine.
"""

import pytest

from conftest import make_feedback
from vocal_coach.config import AnalysisConfig
from vocal_coach.drills import (
    GUARD_COVERAGE,
    GUARD_DICTION,
    GUARD_VOICED,
    PASS_CONDITIONS,
    append_drill_rep,
    build_rep_delta,
    create_drill_session,
    extract_unified_metrics,
    force_fail,
    format_pass_condition,
    select_drill_focus,
)
from vocal_coach.models import Drill, FocusSelection, PitchCoach, TimingMetrics, UnifiedMetrics, WordCoach


def session_for(focus, repeat_count=3):
    selection = FocusSelection(focus=focus, title=focus.title(), reason="test")
    return create_drill_session(selection, repeat_count=repeat_count)


class TestSelectDrillFocus:
    """Test the focus selection chain."""

    @pytest.mark.parametrize("metrics,focus,title", [
        (UnifiedMetrics(word_accuracy_pct=60, timing_mean_abs_ms=100), "words", "Clean missed words"),
        (UnifiedMetrics(word_accuracy_pct=60, timing_mean_abs_ms=700), "timing", "Fix rushed entrances"),
        (UnifiedMetrics(timing_mean_abs_ms=350), "timing", "Tighten timing"),
        (UnifiedMetrics(median_abs_error_cents=30, bias_cents=50), "pitch", "Fix sharp bias"),
        (UnifiedMetrics(median_abs_error_cents=30, bias_cents=-50), "pitch", "Fix flat bias"),
        (UnifiedMetrics(median_abs_error_cents=80, bias_cents=0), "pitch", "Lock pitch accuracy"),
        (UnifiedMetrics(diction_clarity_score=40), "diction", "Crisper consonants"),
        (UnifiedMetrics(phrasing_score=50), "breath", "Support phrase endings"),
        (UnifiedMetrics(note_accuracy_score=80), "notes", "Tune target notes"),
        (UnifiedMetrics(), "pitch", "Lock pitch accuracy"),
    ])
    def test_chain(self, metrics, focus, title):
        """Test the first matching rule picks focus and title."""
        selection = select_drill_focus(metrics)
        assert selection.focus == focus
        assert selection.title == title

    @pytest.mark.parametrize("accuracy,focus", [(60, "words"), (90, "timing")])
    def test_low_confidence(self, accuracy, focus):
        """Test a barely voiced attempt only picks words or timing."""
        metrics = UnifiedMetrics(word_accuracy_pct=accuracy, voiced_pct=0.2, median_abs_error_cents=200)
        assert select_drill_focus(metrics).focus == focus

    def test_avoid_focus(self):
        """Test a repeated focus is skipped for the next preference."""
        metrics = UnifiedMetrics(timing_mean_abs_ms=500)
        assert select_drill_focus(metrics, avoid_focus="timing").focus == "pitch"

    def test_practice_mode(self):
        """Test a practice mode restricts the choice to its own list."""
        metrics = UnifiedMetrics(diction_clarity_score=10)
        assert select_drill_focus(metrics, practice_mode="words").focus == "words"
        assert select_drill_focus(metrics, practice_mode="words", avoid_focus="words").focus == "timing"
        assert select_drill_focus(metrics, practice_mode="pitch", avoid_focus="pitch").focus == "notes"

    def test_target_line(self):
        """Test the target line is carried onto the selection."""
        assert select_drill_focus(UnifiedMetrics(), target_line_index=4).target_line_index == 4


class TestDrillSession:
    """Test the drill session state machine."""

    def test_create(self):
        """Test a new session is active with the focus's pass condition."""
        session = session_for("pitch")
        assert session.status == "active"
        assert session.current_rep == 0
        assert session.pass_condition == PASS_CONDITIONS["pitch"]
        assert session.pass_condition.min_voiced_pct == pytest.approx(0.55)
        assert len(session.id) == 36

    def test_repeat_count_from_config(self):
        """Test the config sets the rep count unless one is passed explicitly."""
        selection = FocusSelection(focus="timing", title="Timing", reason="test")
        session = create_drill_session(selection, config=AnalysisConfig(drill_repeat_count=2))
        assert session.repeat_count == 2
        append_drill_rep(session, UnifiedMetrics(timing_mean_abs_ms=400))
        append_drill_rep(session, UnifiedMetrics(timing_mean_abs_ms=400))
        assert session.status == "failed"
        explicit = create_drill_session(selection, repeat_count=5, config=AnalysisConfig(drill_repeat_count=2))
        assert explicit.repeat_count == 5

    def test_fails_on_exactly_third_rep(self):
        """Test three non-passing reps fail the session on rep 3, not before."""
        session = session_for("timing")
        for rep in range(1, 4):
            result = append_drill_rep(session, UnifiedMetrics(timing_mean_abs_ms=400))
            assert result.passed is False
            assert session.status == ("failed" if rep == 3 else "active")
            assert session.current_rep == rep

    def test_passes_on_second_rep(self):
        """Test rep 2 meeting the threshold passes and rep 3 is never evaluated."""
        session = session_for("timing")
        append_drill_rep(session, UnifiedMetrics(timing_mean_abs_ms=400))
        rep2 = append_drill_rep(session, UnifiedMetrics(timing_mean_abs_ms=200))
        assert rep2.passed is True
        assert session.status == "passed"
        assert append_drill_rep(session, UnifiedMetrics(timing_mean_abs_ms=100)) is None
        assert len(session.reps) == 2

    def test_improvement_passes(self):
        """Test improving by the required delta versus rep 1 passes."""
        session = session_for("diction")
        append_drill_rep(session, UnifiedMetrics(diction_clarity_score=30))
        assert append_drill_rep(session, UnifiedMetrics(diction_clarity_score=42)).passed is True

    def test_voiced_guard(self):
        """Test too little voice fails a pitch rep with the guard message."""
        session = session_for("pitch")
        rep = append_drill_rep(session, UnifiedMetrics(median_abs_error_cents=10, voiced_pct=0.4))
        assert rep.passed is False
        assert rep.guard_failed is True
        assert rep.summary == GUARD_VOICED

    def test_coverage_guard(self):
        """Test stopping early fails a timing rep."""
        session = session_for("timing")
        rep = append_drill_rep(session, UnifiedMetrics(timing_mean_abs_ms=50, coverage_pct=0.4))
        assert rep.guard_failed is True
        assert rep.summary == GUARD_COVERAGE

    def test_diction_guard(self):
        """Test low diction confidence fails a diction rep."""
        session = session_for("diction")
        rep = append_drill_rep(session, UnifiedMetrics(diction_clarity_score=90, diction_low_confidence=True))
        assert rep.summary == GUARD_DICTION

    def test_words_require_fewer_misses(self):
        """Test a words rep fails unless missed or extra counts went down."""
        session = session_for("words")
        append_drill_rep(session, UnifiedMetrics(word_accuracy_pct=60, missed_words_count=4, extra_words_count=1))
        same = append_drill_rep(session, UnifiedMetrics(word_accuracy_pct=85, missed_words_count=4,
                                                        extra_words_count=1))
        assert same.passed is False
        assert same.summary == "Words missed: 4"
        better = append_drill_rep(session, UnifiedMetrics(word_accuracy_pct=85, missed_words_count=2,
                                                          extra_words_count=1))
        assert better.passed is True

    def test_pitch_bias_must_improve(self):
        """Test a large bias fails the rep until it shrinks by 10 cents."""
        session = session_for("pitch")
        append_drill_rep(session, UnifiedMetrics(median_abs_error_cents=50, bias_cents=60, voiced_pct=0.8))
        rep2 = append_drill_rep(session, UnifiedMetrics(median_abs_error_cents=40, bias_cents=55, voiced_pct=0.8))
        rep3 = append_drill_rep(session, UnifiedMetrics(median_abs_error_cents=40, bias_cents=45, voiced_pct=0.8))
        assert rep2.passed is False
        assert rep3.passed is True
        assert session.status == "passed"

    def test_missing_metric(self):
        """Test a rep without the metric fails with a generic summary."""
        session = session_for("breath")
        rep = append_drill_rep(session, UnifiedMetrics())
        assert rep.passed is False
        assert rep.summary == "Rep recorded."

    def test_force_fail(self):
        """Test forcing failure ends an active session."""
        session = session_for("notes")
        force_fail(session)
        assert session.status == "failed"
        assert append_drill_rep(session, UnifiedMetrics(note_accuracy_score=99)) is None


class TestFormatting:
    """Test drill text helpers."""

    @pytest.mark.parametrize("focus,text", [
        ("timing", "Timing < 220ms or improve by 80ms"),
        ("pitch", "Pitch error < 45c or improve by 15c or voiced >= 55%"),
        ("words", "Word accuracy >= 80% or increase by 10%"),
    ])
    def test_format_pass_condition(self, focus, text):
        """Test pass conditions render as goal text."""
        assert format_pass_condition(PASS_CONDITIONS[focus]) == text

    def test_rep_delta(self):
        """Test the delta compares the latest rep with the one before."""
        session = session_for("timing", repeat_count=4)
        assert build_rep_delta(session) is None
        append_drill_rep(session, UnifiedMetrics(timing_mean_abs_ms=480))
        assert build_rep_delta(session) == "Timing: 480ms"
        append_drill_rep(session, UnifiedMetrics(timing_mean_abs_ms=420))
        append_drill_rep(session, UnifiedMetrics(timing_mean_abs_ms=330))
        assert build_rep_delta(session) == "Timing: 420ms -> 330ms"

    def test_values_round_half_up(self):
        """Test displayed values round halves up."""
        session = session_for("timing")
        append_drill_rep(session, UnifiedMetrics(timing_mean_abs_ms=402.5))
        assert build_rep_delta(session) == "Timing: 403ms"

    def test_words_delta(self):
        """Test words sessions report missed word counts."""
        session = session_for("words")
        append_drill_rep(session, UnifiedMetrics(word_accuracy_pct=50, missed_words_count=5))
        append_drill_rep(session, UnifiedMetrics(word_accuracy_pct=60, missed_words_count=3))
        assert build_rep_delta(session) == "Words missed: 5 -> 3"


class TestUnifiedMetrics:
    """Test extract_unified_metrics."""

    def test_flattens_sub_results(self):
        """Test counts, coverage and pitch numbers land on the snapshot."""
        feedback = [
            make_feedback("correct", 0, user_start=0.1, user_end=0.5),
            make_feedback("missed", 1),
            make_feedback("incorrect", 2, user_start=1.0, user_end=1.4),
            make_feedback("extra_ignored", 3, user_word="oh"),
        ]
        pitch = PitchCoach(pitch_accuracy_score=70, stability_score=60, low_confidence=False,
                           has_comparison=True, bias_cents=-12, median_abs_error_cents=30,
                           pct_within_50_cents=0.7, voiced_pct=0.8, drill=Drill(category="pitch", title="p"))
        metrics = extract_unified_metrics(
            word_feedback=feedback,
            timing=TimingMetrics(mean_abs_ms=140, count=3),
            word_coach=WordCoach(word_accuracy_pct=50),
            pitch_coach=pitch,
            pace_ratio=1.05,
            segment_duration_sec=2.0,
        )
        assert metrics.missed_words_count == 2
        assert metrics.extra_words_count == 1
        assert metrics.coverage_pct == pytest.approx(0.7)
        assert metrics.timing_mean_abs_ms == 140
        assert metrics.word_accuracy_pct == 50
        assert metrics.bias_cents == -12
        assert metrics.voiced_pct == pytest.approx(0.8)
        assert metrics.diction_clarity_score is None

    def test_empty(self):
        """Test no inputs give an all-empty snapshot."""
        metrics = extract_unified_metrics()
        assert metrics == UnifiedMetrics()
