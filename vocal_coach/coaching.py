"""
Coaching tips generator.

Combines the sub-results of one attempt (words, timing, pitch, notes,
diction, breath) into subscores, a short ranked issue list, tips and one
recommended drill. Everything here is deterministic: the same inputs always
produce the same coaching.
"""

import logging
from typing import Optional, Sequence

from vocal_coach.models import (
    CORRECT_STATUSES,
    BreathCoach,
    CoachCard,
    CoachResult,
    ComparisonResult,
    ContourMetrics,
    DictionCoach,
    Drill,
    LinePitchResult,
    NoteCoach,
    PitchCoach,
    Subscores,
    TimingMetrics,
    WordCoach,
    WordFeedback,
)
from vocal_coach.stats import clamp, clamp_score, round_half_up
from vocal_coach.words import build_word_coach, compute_timing_metrics

logger = logging.getLogger(__name__)

MAX_ISSUES = 3
MAX_TIPS = 8

# Issue thresholds, evaluated in this order
WORD_ISSUE = 70
DICTION_ISSUE = 60
NOTE_ISSUE = 60
PITCH_ISSUE = 60
STABILITY_ISSUE = 55
TIMING_ISSUE_MS = 180
TIMING_WITHIN_ISSUE = 0.55
PACE_FAST = 1.12
PACE_SLOW = 0.88
BREATH_ISSUE = 65

# Pitch coach thresholds
PITCH_COACH_BIAS = 40
PITCH_COACH_STABILITY = 70
PITCH_COACH_DRIFT = 8
PITCH_COACH_JITTER = 70
DRILL_BIAS_CENTS = 35
LOW_CONFIDENCE_PITCH_CAP = 40

RECORDING_QUALITY = "Recording quality"
RECORDING_SUMMARY = (
    "We could not detect enough clear voice to score pitch reliably. "
    "Try again closer to the mic with less background audio."
)
RECORDING_TIPS = (
    "Move closer to the mic and reduce background music.",
    "Sing at a steady volume for at least 3 seconds.",
)
NO_COMPARISON_TIP = "Reference pitch was unclear; focusing on stability only."

DRILLS = {
    "recording": Drill(
        category="recording",
        title="Clear voice capture",
        steps=("Move closer to the mic.", "Reduce background music volume.", "Record again with steady volume."),
        repeat_count=2,
    ),
    "lyrics": Drill(
        category="lyrics",
        title="Clean missed words",
        steps=(
            "Listen once to the reference line.",
            "Speak the line in rhythm twice (no melody).",
            "Sing the line on one vowel for 2 reps, then add the real words.",
            "Record again aiming for every word start.",
        ),
    ),
    "timing": Drill(
        category="timing",
        title="Timing lock",
        steps=(
            "Set a slow metronome and clap the beat for 30 seconds.",
            "Speak the line on the beat twice, then sing it once with the same timing.",
            "Record again, landing consonants right on the click.",
        ),
    ),
    "pace": Drill(
        category="pace",
        title="Pace match",
        steps=(
            "Tap along with the reference for one pass.",
            "Sing the verse while tapping, matching the reference speed.",
        ),
        repeat_count=2,
    ),
    "pitch_flat": Drill(
        category="pitch",
        title="Fix flat bias",
        steps=(
            "Sing slightly brighter with forward resonance.",
            "Match a reference hum for 2 seconds, then sing the line.",
        ),
    ),
    "pitch_sharp": Drill(
        category="pitch",
        title="Fix sharp bias",
        steps=("Back off volume slightly.", "Aim just under the pitch, then settle in."),
    ),
    "pitch_stability": Drill(
        category="stability",
        title="Stability drill",
        steps=(
            "Sustain on 'ng' for 5 seconds keeping pitch steady.",
            "Then sing the line on a single vowel.",
        ),
    ),
    "pitch_landing": Drill(
        category="pitch",
        title="Landing drill",
        steps=(
            "Sing the first word of each line staccato.",
            "Then connect smoothly without sliding.",
        ),
    ),
    "pitch_focus": Drill(
        category="pitch",
        title="Pitch focus drill",
        steps=("Sing the verse on a single vowel.", "Hold each long note for 3-5 seconds."),
    ),
    "clean": Drill(
        category="clean",
        title="Clean run",
        steps=("Speak the verse in rhythm (no melody) twice, then record again.",),
        repeat_count=2,
    ),
}


# ---------------------------------------------------------------------------
# Pitch coach
# ---------------------------------------------------------------------------

def _line_score(entry: LinePitchResult) -> float:
    if entry.comparison is not None:
        return 0.6 * entry.comparison.pitch_accuracy_score + 0.4 * entry.metrics.stability_score
    return float(entry.metrics.stability_score)


def build_pitch_coach(
    metrics: ContourMetrics,
    comparison: Optional[ComparisonResult] = None,
    line_results: Sequence[LinePitchResult] = (),
) -> PitchCoach:
    """Pitch-specific feedback: bias, stability, drift, jitter and the weakest lines.

    Without a comparison the accuracy score falls back to the stability score.
    """
    if metrics.low_confidence:
        return PitchCoach(
            pitch_accuracy_score=0,
            stability_score=metrics.stability_score,
            low_confidence=True,
            has_comparison=False,
            voiced_pct=metrics.voiced_pct,
            issues=("Low voice detection",),
            tips=("Not enough clear voice detected - try louder/closer and reduce background music.",),
            drill=DRILLS["recording"],
        )

    stability = metrics.stability_score
    bias = comparison.bias_cents if comparison else 0
    issues: list[str] = []
    tips: list[str] = []

    if comparison:
        if bias < -PITCH_COACH_BIAS:
            issues.append("Consistently flat")
            tips.append(f"You're about {abs(bias)} cents flat on average.")
        elif bias > PITCH_COACH_BIAS:
            issues.append("Consistently sharp")
            tips.append(f"You're about {abs(bias)} cents sharp on average.")
    else:
        tips.append(NO_COMPARISON_TIP)

    if stability < PITCH_COACH_STABILITY:
        issues.append("Pitch stability")
        tips.append(f"Pitch wobbles on sustained notes (std ~ {round_half_up(metrics.cents_std_dev)} cents).")
    if abs(metrics.drift_cents_per_sec) > PITCH_COACH_DRIFT:
        issues.append("Pitch drift")
        tips.append(f"Pitch drifts by ~{round_half_up(metrics.drift_cents_per_sec)} cents/sec.")
    if metrics.jitter_cents_rms > PITCH_COACH_JITTER:
        issues.append("Unsteady note transitions")
        tips.append("Note landings are shaky - aim to land on pitch sooner.")

    worst = sorted(line_results, key=_line_score)[:2]
    worst_lines = tuple(entry.line_index for entry in worst)
    target = worst_lines[0] if worst_lines else None

    if not tips:
        tips.append("Pitch accuracy looks good. Aim for even smoother stability.")

    if bias < -PITCH_COACH_BIAS:
        drill = DRILLS["pitch_flat"]
    elif bias > PITCH_COACH_BIAS:
        drill = DRILLS["pitch_sharp"]
    elif stability < PITCH_COACH_STABILITY:
        drill = DRILLS["pitch_stability"].model_copy(update={"target_line_index": target})
    elif metrics.jitter_cents_rms > PITCH_COACH_JITTER:
        drill = DRILLS["pitch_landing"].model_copy(update={"target_line_index": target})
    else:
        drill = DRILLS["pitch_focus"]

    return PitchCoach(
        pitch_accuracy_score=comparison.pitch_accuracy_score if comparison else stability,
        stability_score=stability,
        low_confidence=False,
        has_comparison=comparison is not None,
        bias_cents=bias if comparison else None,
        median_abs_error_cents=comparison.median_abs_error_cents if comparison else None,
        pct_within_50_cents=comparison.pct_within_50_cents if comparison else None,
        voiced_pct=metrics.voiced_pct,
        issues=tuple(issues[:3]),
        worst_lines=worst_lines,
        tips=tuple(tips[:6]),
        drill=drill,
    )


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def _timing_score(timing: TimingMetrics) -> int:
    if timing.count == 0:
        return 50
    penalty = clamp(timing.mean_abs_ms / 4, 0, 60)
    within_penalty = clamp((0.7 - timing.within_120_pct) * 100, 0, 30)
    slope_penalty = clamp(abs(timing.slope_ms_per_sec) / 6, 0, 20)
    return clamp_score(100 - penalty - within_penalty - slope_penalty)


def _compute_subscores(
    word_feedback: Sequence[WordFeedback],
    timing: TimingMetrics,
    metrics: Optional[ContourMetrics],
    comparison: Optional[ComparisonResult],
) -> Subscores:
    total = len(word_feedback)
    correct = sum(1 for fb in word_feedback if fb.status in CORRECT_STATUSES)
    word = clamp_score(100 * correct / total) if total else 0

    if comparison is not None:
        pitch = comparison.pitch_accuracy_score
    elif metrics is not None:
        pitch = clamp_score(50 + 50 * metrics.voiced_pct)
    else:
        pitch = 50
    if metrics is not None and metrics.low_confidence:
        pitch = min(pitch, LOW_CONFIDENCE_PITCH_CAP)

    stability = metrics.stability_score if metrics is not None else 50
    return Subscores(word=word, timing=_timing_score(timing), pitch=pitch, stability=stability)


def _pitch_drill(comparison: Optional[ComparisonResult], target: Optional[int]) -> Drill:
    bias = comparison.bias_cents if comparison else 0
    if bias < -DRILL_BIAS_CENTS:
        key = "pitch_flat"
    elif bias > DRILL_BIAS_CENTS:
        key = "pitch_sharp"
    else:
        key = "pitch_stability"
    return DRILLS[key].model_copy(update={"target_line_index": target})


def build_coach_result(
    word_feedback: Sequence[WordFeedback] = (),
    pitch_metrics: Optional[ContourMetrics] = None,
    comparison: Optional[ComparisonResult] = None,
    pitch_coach: Optional[PitchCoach] = None,
    word_coach: Optional[WordCoach] = None,
    diction: Optional[DictionCoach] = None,
    breath: Optional[BreathCoach] = None,
    note_coach: Optional[NoteCoach] = None,
    pace_ratio: Optional[float] = None,
    timing: Optional[TimingMetrics] = None,
) -> CoachResult:
    """Aggregate all sub-results of one attempt into a CoachResult.

    Args:
        word_feedback: Per-word alignment results.
        pitch_metrics: Contour metrics of the user's attempt.
        comparison:    User-vs-reference contour comparison (None without a basis).
        pitch_coach:   Output of build_pitch_coach, used for the focus line.
        word_coach:    Output of build_word_coach (built here when missing).
        diction:       Optional diction coach.
        breath:        Optional breath coach.
        note_coach:    Optional note coach.
        pace_ratio:    User duration over reference duration.
        timing:        Timing metrics (computed from word_feedback when missing).

    Returns:
        CoachResult with at most 3 issues and 8 tips.
    """
    if timing is None:
        timing = compute_timing_metrics(word_feedback)
    word_accuracy = word_coach.word_accuracy_pct if word_coach is not None else None
    if word_coach is None:
        word_coach = build_word_coach(word_feedback)
    if word_accuracy is None:
        word_accuracy = word_coach.word_accuracy_pct if word_feedback else 100
    subscores = _compute_subscores(word_feedback, timing, pitch_metrics, comparison)
    focus_line = pitch_coach.worst_lines[0] if pitch_coach and pitch_coach.worst_lines else None

    low_confidence = (
        (pitch_metrics is not None and pitch_metrics.low_confidence)
        or (pitch_coach is not None and pitch_coach.low_confidence)
        or (diction is not None and diction.low_confidence)
    )
    if low_confidence:
        logger.info("Coach short-circuit: recording quality")
        return CoachResult(
            subscores=subscores,
            top_issues=(RECORDING_QUALITY,),
            issue_categories=("recording",),
            tips=RECORDING_TIPS,
            drill=DRILLS["recording"],
            summary=RECORDING_SUMMARY,
            focus_line=focus_line,
            low_confidence=True,
        )

    # --- Issues, in fixed priority order ---
    issues: list[tuple[str, str, list[str], str]] = []  # (category, label, tips, sentence)

    if word_accuracy < WORD_ISSUE:
        missed = word_coach.missed_words[:3]
        if missed:
            listed = ", ".join(f"'{w}'" for w in missed)
            sentence = f"Lyrics accuracy is the main focus - you missed {listed}."
        else:
            sentence = "Lyrics accuracy is the main focus - aim to land every word clearly."
        issues.append(("lyrics", "Lyrics clarity", list(word_coach.tips[:2]), sentence))

    if diction is not None and diction.clarity_score < DICTION_ISSUE:
        issues.append(("diction", "Diction clarity", list(diction.tips[:2]),
                       "Diction is unclear on a few words - exaggerate consonants and keep the vowel shape."))

    if (note_coach is not None and note_coach.enough_data
            and note_coach.note_accuracy_score is not None
            and note_coach.note_accuracy_score < NOTE_ISSUE):
        if note_coach.worst_notes:
            worst = note_coach.worst_notes[0]
            sentence = f"Intonation slips on {worst.note} by about {abs(worst.cents_off)} cents."
        else:
            sentence = "Intonation needs attention - land the note cleanly before adding vibrato."
        issues.append(("notes", "Note intonation", list(note_coach.tips[:2]), sentence))

    if comparison is not None and comparison.pitch_accuracy_score < PITCH_ISSUE:
        bias = comparison.bias_cents
        if abs(bias) > 25:
            direction = "sharp" if bias > 0 else "flat"
            tip = f"You're about {abs(bias)} cents {direction} on average."
            sentence = f"Pitch accuracy needs attention - you are {direction} by about {abs(bias)} cents."
        else:
            tip = "Aim to land the target note sooner."
            sentence = "Pitch accuracy needs attention - aim to land the target note sooner."
        issues.append(("pitch", "Pitch accuracy", [tip], sentence))

    if comparison is not None and subscores.stability < STABILITY_ISSUE:
        std = round_half_up(pitch_metrics.cents_std_dev) if pitch_metrics else 0
        issues.append(("stability", "Pitch stability",
                       [f"Pitch stability is shaky (+/-{std} cents)."],
                       "Pitch stability is uneven - keep long notes steady and supported."))

    if timing.count and (timing.mean_abs_ms > TIMING_ISSUE_MS or timing.within_120_pct < TIMING_WITHIN_ISSUE):
        if timing.median_ms > 60:
            tendency = "late"
        elif timing.median_ms < -60:
            tendency = "early"
        else:
            tendency = "inconsistent"
        issues.append(("timing", "Timing tightness", [
            f"You're {tendency} on average by ~{abs(round_half_up(timing.median_ms))}ms.",
            f"Only {round_half_up(timing.within_120_pct * 100)}% of words land within 120ms.",
        ], f"Timing is loose - average offset is about {round_half_up(clamp(timing.mean_abs_ms, 0, 2000))}ms."))

    if pace_ratio is not None and pace_ratio > PACE_FAST:
        issues.append(("pace", "Rushing pace",
                       ["You're slightly fast. Slow down and land consonants on the beat."],
                       "You are rushing the phrase - slow the pace slightly."))
    elif pace_ratio is not None and 0 < pace_ratio < PACE_SLOW:
        issues.append(("pace", "Dragging pace",
                       ["You're a bit slow. Push the phrases forward to match the reference."],
                       "You are dragging the phrase - push forward to match the reference."))

    if breath is not None and not breath.low_confidence and breath.phrasing_score < BREATH_ISSUE:
        issues.append(("breath", "Breath control", list(breath.tips[:2]),
                       "Phrase endings drop early - support airflow through the last word."))

    issues = issues[:MAX_ISSUES]

    tips: list[str] = []
    for _, _, issue_tips, _ in issues:
        for tip in issue_tips:
            if tip not in tips:
                tips.append(tip)
    if pitch_coach is not None and not pitch_coach.has_comparison and NO_COMPARISON_TIP not in tips:
        tips.append(NO_COMPARISON_TIP)
    if not tips:
        tips.append("Great take. Keep the timing tight and words clean.")

    drill = _select_drill(issues[0][0] if issues else None, comparison, focus_line,
                          diction=diction, breath=breath, note_coach=note_coach)

    sentences = [sentence for _, _, _, sentence in issues]
    if not sentences:
        sentences.append("Nice take. Keep the timing tight and words clean.")
    if len(sentences) < 2:
        sentences.append("Stay relaxed and focus on clear word starts.")

    logger.info("Coach result: issues=%s word=%d timing=%d pitch=%d stability=%d",
                [label for _, label, _, _ in issues], subscores.word, subscores.timing,
                subscores.pitch, subscores.stability)

    return CoachResult(
        subscores=subscores,
        top_issues=tuple(label for _, label, _, _ in issues),
        issue_categories=tuple(category for category, _, _, _ in issues),
        tips=tuple(tips[:MAX_TIPS]),
        drill=drill,
        summary=" ".join(sentences[:3]),
        focus_line=focus_line,
    )


def _select_drill(
    category: Optional[str],
    comparison: Optional[ComparisonResult],
    focus_line: Optional[int],
    diction: Optional[DictionCoach] = None,
    breath: Optional[BreathCoach] = None,
    note_coach: Optional[NoteCoach] = None,
) -> Drill:
    if category is None:
        return DRILLS["clean"]
    if category in ("pitch", "stability"):
        return _pitch_drill(comparison, focus_line)
    if category == "diction" and diction is not None:
        return diction.drill
    if category == "notes" and note_coach is not None:
        return note_coach.drill
    if category == "breath" and breath is not None:
        return breath.drill
    return DRILLS[category]


# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------

def build_coach_cards(
    subscores: Subscores,
    timing: TimingMetrics,
    word_coach: Optional[WordCoach] = None,
    diction: Optional[DictionCoach] = None,
    note_coach: Optional[NoteCoach] = None,
    breath: Optional[BreathCoach] = None,
    pitch_coach: Optional[PitchCoach] = None,
) -> list[CoachCard]:
    """The two most urgent detail cards for the results screen."""
    if (diction is not None and diction.low_confidence) or (pitch_coach is not None and pitch_coach.low_confidence):
        return [CoachCard(category="recording", title="Recording Quality", score=0, tips=RECORDING_TIPS)]

    candidates: list[tuple[float, CoachCard]] = []

    if diction is not None:
        candidates.append((100 - diction.clarity_score, CoachCard(
            category="diction",
            title="Diction & Clarity",
            score=diction.clarity_score,
            items=tuple(w.word for w in diction.worst_words[:4]),
            tips=diction.tips,
            drill=diction.drill,
        )))

    if note_coach is not None and note_coach.enough_data:
        candidates.append((100 - note_coach.note_accuracy_score, CoachCard(
            category="notes",
            title="Notes & Intonation",
            score=note_coach.note_accuracy_score,
            items=tuple(f"{n.note} ({n.cents_off}c)" for n in note_coach.worst_notes),
            tips=note_coach.tips,
            drill=note_coach.drill,
        )))

    if word_coach is not None and word_coach.word_accuracy_pct < 90:
        candidates.append((100 - word_coach.word_accuracy_pct, CoachCard(
            category="words",
            title="Words & Accuracy",
            score=round_half_up(word_coach.word_accuracy_pct),
            items=(word_coach.missed_words + word_coach.extra_words)[:4],
            tips=word_coach.tips,
        )))

    if breath is not None and not breath.low_confidence:
        candidates.append((100 - breath.phrasing_score, CoachCard(
            category="breath",
            title="Breath & Phrasing",
            score=breath.phrasing_score,
            tips=breath.tips,
            drill=breath.drill,
        )))

    if timing.count and timing.mean_abs_ms > 200:
        candidates.append((clamp((timing.mean_abs_ms - 120) / 3, 0, 100), CoachCard(
            category="timing",
            title="Timing Tightness",
            score=subscores.timing,
            items=(
                f"Avg +/- {round_half_up(timing.mean_abs_ms)}ms",
                f"{round_half_up(timing.within_120_pct * 100)}% within 120ms",
            ),
            drill=DRILLS["timing"],
        )))

    candidates.sort(key=lambda c: c[0], reverse=True)
    return [card for _, card in candidates[:2]]
