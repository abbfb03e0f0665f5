"""
Drill sessions: pick a practice focus, define its pass condition, and track
repeated attempts until the user passes or runs out of reps.

Session lifecycle: created ``active``; moves to ``passed`` on the first
passing rep, or to ``failed`` once ``repeat_count`` reps were recorded
without a pass (or when the caller forces it).
"""

import logging
import uuid
from typing import Optional, Sequence

from vocal_coach.config import AnalysisConfig
from vocal_coach.models import (
    BreathCoach,
    DictionCoach,
    DrillFocus,
    DrillSession,
    FocusSelection,
    NoteCoach,
    PassCondition,
    PitchCoach,
    RepResult,
    TimingMetrics,
    UnifiedMetrics,
    WordCoach,
    WordFeedback,
)
from vocal_coach.stats import round_half_up
from vocal_coach.words import compute_coverage

logger = logging.getLogger(__name__)

DEFAULT_REPEAT = 3
WORD_ACCURACY_TARGET = 80
WORD_ACCURACY_IMPROVE = 10
TIMING_TARGET_MS = 220
TIMING_IMPROVE_MS = 80
TIMING_EXTREME_MS = 650
TIMING_FOCUS_MS = 300
TIMING_RUSHED_MS = 420
PITCH_TARGET_CENTS = 45
PITCH_IMPROVE_CENTS = 15
PITCH_FOCUS_CENTS = 60
PITCH_BIAS_THRESHOLD = 35
PITCH_BIAS_IMPROVE = 10
PITCH_MIN_VOICED = 0.55
LOW_CONFIDENCE_VOICED = 0.35
DICTION_TARGET = 55
DICTION_IMPROVE = 12
DICTION_FOCUS = 45
BREATH_TARGET = 65
BREATH_IMPROVE = 10
BREATH_FOCUS = 55
NOTES_TARGET = 70
NOTES_IMPROVE = 10
WORDS_FOCUS = 75
MIN_COVERAGE = 0.6

GUARD_VOICED = "Not enough clear voice detected."
GUARD_COVERAGE = "You stopped early - record the full line."
GUARD_DICTION = "Audio too soft for diction scoring."

METRIC_LABELS = {
    "word_accuracy_pct": "Word accuracy",
    "timing_mean_abs_ms": "Timing",
    "median_abs_error_cents": "Pitch error",
    "diction_clarity_score": "Diction clarity",
    "phrasing_score": "Breath score",
    "note_accuracy_score": "Note accuracy",
}

PASS_CONDITIONS = {
    "words": PassCondition(metric="word_accuracy_pct", direction="gte",
                           threshold=WORD_ACCURACY_TARGET, improve_by=WORD_ACCURACY_IMPROVE),
    "timing": PassCondition(metric="timing_mean_abs_ms", direction="lte",
                            threshold=TIMING_TARGET_MS, improve_by=TIMING_IMPROVE_MS),
    "pitch": PassCondition(metric="median_abs_error_cents", direction="lte",
                           threshold=PITCH_TARGET_CENTS, improve_by=PITCH_IMPROVE_CENTS,
                           min_voiced_pct=PITCH_MIN_VOICED),
    "diction": PassCondition(metric="diction_clarity_score", direction="gte",
                             threshold=DICTION_TARGET, improve_by=DICTION_IMPROVE),
    "breath": PassCondition(metric="phrasing_score", direction="gte",
                            threshold=BREATH_TARGET, improve_by=BREATH_IMPROVE),
    "notes": PassCondition(metric="note_accuracy_score", direction="gte",
                           threshold=NOTES_TARGET, improve_by=NOTES_IMPROVE),
}

MODE_PREFERENCES = {
    "words": ("words", "timing", "pitch"),
    "timing": ("timing", "words", "pitch"),
    "pitch": ("pitch", "notes", "timing"),
}
FULL_PREFERENCES = ("pitch", "timing", "words", "diction", "breath", "notes")


# ---------------------------------------------------------------------------
# Metrics snapshot
# ---------------------------------------------------------------------------

def extract_unified_metrics(
    word_feedback: Sequence[WordFeedback] = (),
    timing: Optional[TimingMetrics] = None,
    word_coach: Optional[WordCoach] = None,
    pitch_coach: Optional[PitchCoach] = None,
    note_coach: Optional[NoteCoach] = None,
    diction: Optional[DictionCoach] = None,
    breath: Optional[BreathCoach] = None,
    pace_ratio: Optional[float] = None,
    timing_correlation: Optional[float] = None,
    segment_duration_sec: Optional[float] = None,
) -> UnifiedMetrics:
    """Flatten one attempt's sub-results into the metrics a drill rep is judged on."""
    missed = extra = None
    if word_feedback:
        missed = sum(1 for fb in word_feedback if fb.status in ("missed", "incorrect"))
        extra = sum(1 for fb in word_feedback if fb.status == "extra_ignored")

    return UnifiedMetrics(
        timing_mean_abs_ms=timing.mean_abs_ms if timing and timing.count else None,
        timing_correlation=timing_correlation,
        pace_ratio=pace_ratio,
        word_accuracy_pct=word_coach.word_accuracy_pct if word_coach and word_feedback else None,
        coverage_pct=compute_coverage(word_feedback, segment_duration_sec),
        bias_cents=pitch_coach.bias_cents if pitch_coach else None,
        median_abs_error_cents=pitch_coach.median_abs_error_cents if pitch_coach else None,
        pct_within_50_cents=pitch_coach.pct_within_50_cents if pitch_coach else None,
        voiced_pct=pitch_coach.voiced_pct if pitch_coach else None,
        pitch_accuracy_score=pitch_coach.pitch_accuracy_score if pitch_coach else None,
        pitch_stability_score=pitch_coach.stability_score if pitch_coach else None,
        diction_clarity_score=diction.clarity_score if diction else None,
        diction_low_confidence=diction.low_confidence if diction else None,
        note_accuracy_score=note_coach.note_accuracy_score if note_coach else None,
        note_bias_cents=note_coach.bias_cents if note_coach else None,
        phrasing_score=breath.phrasing_score if breath and not breath.low_confidence else None,
        extra_breaths_count=breath.extra_breaths_count if breath else None,
        tail_drop_count=breath.tail_drop_count if breath else None,
        missed_words_count=missed,
        extra_words_count=extra,
    )


# ---------------------------------------------------------------------------
# Focus selection
# ---------------------------------------------------------------------------

def _focus_title(focus: str, metrics: UnifiedMetrics) -> str:
    if focus == "words":
        return "Clean missed words"
    if focus == "timing":
        return "Fix rushed entrances" if (metrics.timing_mean_abs_ms or 0) > TIMING_RUSHED_MS else "Tighten timing"
    if focus == "pitch":
        bias = metrics.bias_cents or 0
        if bias > PITCH_BIAS_THRESHOLD:
            return "Fix sharp bias"
        if bias < -PITCH_BIAS_THRESHOLD:
            return "Fix flat bias"
        return "Lock pitch accuracy"
    if focus == "diction":
        return "Crisper consonants"
    if focus == "breath":
        return "Support phrase endings"
    return "Tune target notes"


def select_drill_focus(
    metrics: UnifiedMetrics,
    low_confidence: bool = False,
    avoid_focus: Optional[DrillFocus] = None,
    practice_mode: Optional[str] = None,
    target_line_index: Optional[int] = None,
) -> FocusSelection:
    """Choose the next drill focus from an attempt's metrics.

    The checks run as a fixed if/else chain; their order is the tie-break.
    A practice mode other than ``full`` restricts the choice to that mode's
    preference list.
    """
    word_accuracy = metrics.word_accuracy_pct if metrics.word_accuracy_pct is not None else 100
    timing_ms = metrics.timing_mean_abs_ms or 0
    bias = metrics.bias_cents or 0
    pitch_error = metrics.median_abs_error_cents or 0
    diction = metrics.diction_clarity_score if metrics.diction_clarity_score is not None else 100
    breath = metrics.phrasing_score if metrics.phrasing_score is not None else 100
    low_confidence = (
        low_confidence
        or bool(metrics.diction_low_confidence)
        or (metrics.voiced_pct is not None and metrics.voiced_pct < LOW_CONFIDENCE_VOICED)
    )
    preferences = MODE_PREFERENCES.get(practice_mode or "full", FULL_PREFERENCES)

    if practice_mode and practice_mode in MODE_PREFERENCES:
        focus = next((f for f in preferences if f != avoid_focus), "pitch")
        reason = f"practice mode {practice_mode}"
    elif low_confidence:
        focus = "words" if word_accuracy < WORDS_FOCUS else "timing"
        reason = "low confidence recording"
    elif word_accuracy < WORDS_FOCUS and timing_ms <= TIMING_EXTREME_MS:
        focus, reason = "words", "word accuracy"
    elif timing_ms > TIMING_FOCUS_MS:
        focus, reason = "timing", "timing"
    elif pitch_error > PITCH_FOCUS_CENTS or abs(bias) > PITCH_BIAS_THRESHOLD:
        focus, reason = "pitch", "pitch error"
    elif diction < DICTION_FOCUS:
        focus, reason = "diction", "diction clarity"
    elif breath < BREATH_FOCUS:
        focus, reason = "breath", "phrasing"
    elif metrics.note_accuracy_score:
        focus, reason = "notes", "note accuracy"
    else:
        focus, reason = "pitch", "default"

    if avoid_focus and focus == avoid_focus:
        focus = next((f for f in preferences if f != avoid_focus), focus)
        reason = f"{reason} (avoiding {avoid_focus})"

    logger.info("Drill focus: %s (%s)", focus, reason)
    return FocusSelection(
        focus=focus,
        title=_focus_title(focus, metrics),
        reason=reason,
        target_line_index=target_line_index,
    )


# ---------------------------------------------------------------------------
# Session state machine
# ---------------------------------------------------------------------------

def create_drill_session(
    selection: FocusSelection,
    repeat_count: Optional[int] = None,
    config: Optional[AnalysisConfig] = None,
) -> DrillSession:
    """Start an active session for the selected focus.

    The rep budget is *repeat_count* when given, else the config's
    ``drill_repeat_count``, else DEFAULT_REPEAT.
    """
    if repeat_count is None:
        repeat_count = config.drill_repeat_count if config is not None else DEFAULT_REPEAT
    return DrillSession(
        id=str(uuid.uuid4()),
        focus=selection.focus,
        title=selection.title,
        target_line_index=selection.target_line_index,
        repeat_count=repeat_count,
        pass_condition=PASS_CONDITIONS[selection.focus],
    )


def _guard(session: DrillSession, metrics: UnifiedMetrics) -> Optional[str]:
    condition = session.pass_condition
    if condition.min_voiced_pct and (metrics.voiced_pct or 0) < condition.min_voiced_pct:
        return GUARD_VOICED
    if session.focus == "timing" and (metrics.coverage_pct if metrics.coverage_pct is not None else 1) < MIN_COVERAGE:
        return GUARD_COVERAGE
    if session.focus == "diction" and metrics.diction_low_confidence:
        return GUARD_DICTION
    return None


def _metric_passes(session: DrillSession, metrics: UnifiedMetrics) -> bool:
    condition = session.pass_condition
    baseline_rep = session.reps[0] if session.reps else None
    current = getattr(metrics, condition.metric)
    baseline = getattr(baseline_rep.metrics, condition.metric) if baseline_rep else None

    passed = False
    if current is not None:
        if condition.direction == "lte":
            meets = current <= condition.threshold
            improved = baseline is not None and baseline - current >= condition.improve_by
        else:
            meets = current >= condition.threshold
            improved = baseline is not None and current - baseline >= condition.improve_by
        passed = meets or improved

    if session.focus == "words" and baseline_rep is not None:
        base_missed = baseline_rep.metrics.missed_words_count
        base_extra = baseline_rep.metrics.extra_words_count
        missed_reduced = (base_missed is not None and metrics.missed_words_count is not None
                          and metrics.missed_words_count < base_missed)
        extra_reduced = (base_extra is not None and metrics.extra_words_count is not None
                         and metrics.extra_words_count < base_extra)
        if (base_missed is not None or base_extra is not None) and not (missed_reduced or extra_reduced):
            passed = False

    if session.focus == "pitch" and metrics.bias_cents is not None and abs(metrics.bias_cents) > PITCH_BIAS_THRESHOLD:
        base_bias = baseline_rep.metrics.bias_cents if baseline_rep else None
        if base_bias is not None:
            bias_improved = abs(metrics.bias_cents) <= abs(base_bias) - PITCH_BIAS_IMPROVE
        else:
            bias_improved = False
        if not bias_improved:
            passed = False

    return passed


def _format_value(metric: str, value: float) -> str:
    rounded = round_half_up(value)
    if metric.endswith("_ms"):
        return f"{rounded}ms"
    if metric.endswith("_cents"):
        return f"{rounded}c"
    if metric.endswith("_pct") or metric.endswith("_score"):
        return f"{rounded}%"
    return str(rounded)


def _metric_label(metric: str) -> str:
    return METRIC_LABELS.get(metric, metric.replace("_", " ").capitalize())


def _rep_summary(session: DrillSession, metrics: UnifiedMetrics) -> str:
    if session.focus == "words" and metrics.missed_words_count is not None:
        return f"Words missed: {metrics.missed_words_count}"
    metric = session.pass_condition.metric
    value = getattr(metrics, metric)
    if value is None:
        return "Rep recorded."
    return f"{_metric_label(metric)}: {_format_value(metric, value)}"


def append_drill_rep(session: DrillSession, metrics: UnifiedMetrics) -> Optional[RepResult]:
    """Record one attempt on an active session and advance its status.

    Guards (too little voice, stopping early, diction too quiet) fail the rep
    before the metric is looked at. Returns the new RepResult, or None when
    the session is already finished.
    """
    if session.status != "active":
        logger.warning("Ignoring rep for %s drill session %s", session.status, session.id)
        return None

    rep_number = len(session.reps) + 1
    guard = _guard(session, metrics)
    if guard is not None:
        rep = RepResult(rep=rep_number, metrics=metrics, passed=False, guard_failed=True, summary=guard)
    else:
        passed = _metric_passes(session, metrics)
        rep = RepResult(rep=rep_number, metrics=metrics, passed=passed, summary=_rep_summary(session, metrics))

    session.reps.append(rep)
    session.current_rep = min(rep_number, session.repeat_count)
    if rep.passed:
        session.status = "passed"
    elif rep_number >= session.repeat_count:
        session.status = "failed"

    logger.info("Drill %s rep %d/%d: %s (%s)", session.focus, rep_number,
                session.repeat_count, session.status, rep.summary)
    return rep


def force_fail(session: DrillSession) -> DrillSession:
    """Abandon an active session, e.g. to switch focus."""
    if session.status == "active":
        session.status = "failed"
        logger.info("Drill session %s force-failed", session.id)
    return session


def build_rep_delta(session: DrillSession) -> Optional[str]:
    """Short "before -> after" text comparing the latest rep with the one before."""
    if not session.reps:
        return None
    current = session.reps[-1]
    previous = session.reps[-2] if len(session.reps) > 1 else None

    if session.focus == "words" and current.metrics.missed_words_count is not None:
        if previous and previous.metrics.missed_words_count is not None:
            return f"Words missed: {previous.metrics.missed_words_count} -> {current.metrics.missed_words_count}"
        return f"Words missed: {current.metrics.missed_words_count}"

    metric = session.pass_condition.metric
    value = getattr(current.metrics, metric)
    if value is None:
        return None
    label = _metric_label(metric)
    before = getattr(previous.metrics, metric) if previous else None
    if before is not None:
        return f"{label}: {_format_value(metric, before)} -> {_format_value(metric, value)}"
    return f"{label}: {_format_value(metric, value)}"


def format_pass_condition(condition: PassCondition) -> str:
    """Human-readable goal, e.g. ``Timing < 220ms or improve by 80ms``."""
    label = _metric_label(condition.metric)
    symbol = "<" if condition.direction == "lte" else ">="
    verb = "improve by" if condition.direction == "lte" else "increase by"
    parts = [
        f"{label} {symbol} {_format_value(condition.metric, condition.threshold)}",
        f"{verb} {_format_value(condition.metric, condition.improve_by)}",
    ]
    if condition.min_voiced_pct is not None:
        parts.append(f"voiced >= {int(round(condition.min_voiced_pct * 100))}%")
    return " or ".join(parts)
