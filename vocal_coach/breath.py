"""
Breath and phrasing coach: detects line endings that fade out and breath
breaks in the middle of a line.
"""

import logging
from typing import Sequence

from vocal_coach.models import AudioSignal, BreathCoach, Drill, PitchContour, ReferenceLine
from vocal_coach.stats import clamp_score, rms

logger = logging.getLogger(__name__)

TAIL_FRACTION = 0.2
TAIL_DROP_RATIO = 0.6
MIN_HEAD_RMS = 0.001
BREATH_GAP_SEC = 0.35
TAIL_PENALTY = 15
BREATH_PENALTY = 12

BREATH_RESET_DRILL = Drill(
    category="breath",
    title="Breath reset",
    steps=("Sing the line once focusing on even airflow.",),
    repeat_count=2,
)

BREATH_SUPPORT_DRILL = Drill(
    category="breath",
    title="Breath support drill",
    steps=(
        "Inhale for 2 seconds, exhale on a hiss for 6 seconds.",
        "Sing the target line once on a single vowel.",
        "Repeat the line 3 times without dropping the end.",
    ),
    repeat_count=3,
)


def _longest_unvoiced_run(contour: PitchContour, start: float, end: float) -> float:
    longest = 0.0
    current = 0.0
    for frame in contour.frames:
        if frame.t < start or frame.t > end:
            continue
        if frame.voiced:
            current = 0.0
        else:
            current += contour.hop_sec
            longest = max(longest, current)
    return longest


def build_breath_coach(
    signal: AudioSignal,
    contour: PitchContour,
    lines: Sequence[ReferenceLine],
) -> BreathCoach:
    """Score phrasing across the reference lines of the user recording."""
    if not lines:
        return BreathCoach(phrasing_score=0, low_confidence=True, drill=BREATH_RESET_DRILL)
    if not contour.voiced_frames:
        return BreathCoach(
            phrasing_score=0,
            low_confidence=True,
            tips=("We did not detect enough voice to score phrasing.",),
            drill=BREATH_RESET_DRILL,
        )

    sr = signal.sample_rate
    samples = signal.samples
    tail_drops: list[int] = []
    breaks: list[int] = []

    for line in lines:
        start = int(line.start * sr)
        end = min(len(samples), int(line.end * sr))
        if end <= start:
            continue
        window = max(1, int((end - start) * TAIL_FRACTION))
        head = rms(samples[start:start + window])
        tail = rms(samples[end - window:end])
        if head > MIN_HEAD_RMS and tail / head < TAIL_DROP_RATIO:
            tail_drops.append(line.index)

        if _longest_unvoiced_run(contour, line.start, line.end) > BREATH_GAP_SEC:
            breaks.append(line.index)

    tips = []
    if tail_drops:
        tips.append(f"The end of line {tail_drops[0] + 1} fades early. Support airflow through the last word.")
    if breaks:
        tips.append(f"You take a breath break in line {breaks[0] + 1}. Try connecting the phrase.")
    if not tips:
        tips.append("Phrasing is steady. Keep supporting the ends of lines.")

    target_line = tail_drops[0] if tail_drops else breaks[0] if breaks else None
    score = clamp_score(100 - TAIL_PENALTY * len(tail_drops) - BREATH_PENALTY * len(breaks))
    logger.debug("Phrasing %d: %d tail drops, %d breath breaks", score, len(tail_drops), len(breaks))

    return BreathCoach(
        phrasing_score=score,
        low_confidence=False,
        tail_drop_count=len(tail_drops),
        extra_breaths_count=len(breaks),
        tail_drop_lines=tuple(tail_drops),
        extra_breath_lines=tuple(breaks),
        tips=tuple(tips),
        drill=BREATH_SUPPORT_DRILL.model_copy(update={"target_line_index": target_line}),
    )
