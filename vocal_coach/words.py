"""
Word-level coaching from the alignment collaborator's per-word feedback:
timing statistics, weighted lyric accuracy, missed/extra words and
rushed or late lines.
"""

import logging
import re
from typing import Optional, Sequence

from vocal_coach.models import CORRECT_STATUSES, ReferenceLine, TimingMetrics, WordCoach, WordFeedback
from vocal_coach.stats import linear_slope, mean, median, round_half_up

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_WORD = 0.45
PHRASE_DELTA_MS = 250
ON_TIME_MS = 120
MAX_MISSED = 5
MAX_EXTRA = 3


def _normalize_token(value: str) -> str:
    token = re.sub(r"['’]", "", value.lower())
    return re.sub(r"[^a-z0-9]+", " ", token).strip()


def _unique(values: Sequence[str], limit: int) -> tuple[str, ...]:
    seen = set()
    out = []
    for value in values:
        key = _normalize_token(value or "")
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(value)
    return tuple(out[:limit])


def compute_timing_metrics(word_feedback: Sequence[WordFeedback]) -> TimingMetrics:
    """Timing statistics over correctly sung words that carry a delta."""
    timed = [
        fb for fb in word_feedback
        if fb.status in CORRECT_STATUSES and fb.delta_ms is not None
    ]
    if not timed:
        return TimingMetrics()
    deltas = [fb.delta_ms for fb in timed]
    within = sum(1 for d in deltas if abs(d) <= ON_TIME_MS)
    return TimingMetrics(
        mean_abs_ms=round_half_up(mean([abs(d) for d in deltas])),
        median_ms=round_half_up(median(deltas)),
        within_120_pct=within / len(deltas),
        slope_ms_per_sec=linear_slope([fb.ref_start for fb in timed], deltas),
        count=len(deltas),
    )


def build_word_coach(
    word_feedback: Sequence[WordFeedback],
    lines: Optional[Sequence[ReferenceLine]] = None,
) -> WordCoach:
    """Lyric accuracy, missed/extra words and rushed/late lines."""
    total = len(word_feedback)
    weighted = 0.0
    for fb in word_feedback:
        if fb.status in CORRECT_STATUSES:
            weighted += 1
        elif fb.status == "incorrect" and fb.confidence is not None and fb.confidence < LOW_CONFIDENCE_WORD:
            weighted += 0.5
    accuracy = round_half_up(100 * weighted / total) if total else 0

    missed = _unique([
        fb.ref_word for fb in word_feedback
        if fb.status == "missed"
        or (fb.status == "incorrect" and (fb.confidence is None or fb.confidence >= LOW_CONFIDENCE_WORD))
    ], MAX_MISSED)
    extra = _unique([fb.user_word or "" for fb in word_feedback if fb.status == "extra_ignored"], MAX_EXTRA)

    rushed: list[ReferenceLine] = []
    late: list[ReferenceLine] = []
    for line in lines or ():
        deltas = [
            fb.delta_ms for fb in word_feedback
            if fb.status in CORRECT_STATUSES
            and fb.delta_ms is not None
            and fb.ref_start >= line.start
            and fb.ref_end <= line.end + 0.01
        ]
        if not deltas:
            continue
        avg = mean(deltas)
        if avg < -PHRASE_DELTA_MS:
            rushed.append(line)
        elif avg > PHRASE_DELTA_MS:
            late.append(line)

    tips = []
    if missed:
        tips.append("You skipped " + " and ".join(f"'{w}'" for w in missed) + ".")
    if extra:
        tips.append("You added extra words like " + " and ".join(f"'{w}'" for w in extra) + ".")
    if rushed:
        tips.append(f'You rushed the phrase "{rushed[0].text}".')
    if late:
        tips.append(f'You came in late on "{late[0].text}".')
    if len(tips) < 2:
        tips.append("Enter words right on the beat and keep consonants clear.")
    if len(tips) < 2:
        tips.append("Speak the line once in rhythm, then sing it again.")

    return WordCoach(
        word_accuracy_pct=accuracy,
        missed_words=missed,
        extra_words=extra,
        rushed_lines=tuple(line.index for line in rushed[:3]),
        late_lines=tuple(line.index for line in late[:3]),
        tips=tuple(tips[:4]),
    )


def compute_coverage(word_feedback: Sequence[WordFeedback], segment_duration_sec: Optional[float]) -> Optional[float]:
    """How far into the segment the user got, from the last sung word's end time.

    Returns None when the segment duration is unknown or no word was sung.
    """
    if not segment_duration_sec or segment_duration_sec <= 0:
        return None
    last_end = 0.0
    for fb in word_feedback:
        value = fb.user_end if fb.user_end is not None else fb.user_start
        if value is not None:
            last_end = max(last_end, value)
    if last_end <= 0:
        return None
    return min(1.0, last_end / segment_duration_sec)
