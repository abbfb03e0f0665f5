"""
Scoring for vocal practice attempts.

Combines the four coach subscores into one overall score, weighted by the
practice mode:
  - full:   pitch 40%, timing 25%, stability 20%, words 15%
  - words:  words 70%, timing 15%, pitch 10%, stability 5%
  - timing: timing 70%, words 15%, pitch 10%, stability 5%
  - pitch:  pitch 70%, stability 20%, timing 10%

Also scores pitch line by line so the coach can point at the weakest lines.
"""

import logging
from typing import Optional, Sequence

from vocal_coach.compare import compare_contours
from vocal_coach.contour import DEFAULT_FRAME_SEC, DEFAULT_HOP_SEC, compute_contour_metrics, extract_contour
from vocal_coach.models import AudioSignal, LinePitchResult, ReferenceLine, Subscores
from vocal_coach.stats import clamp_score

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Weights
# ---------------------------------------------------------------------------

DEFAULT_WEIGHTS = {"pitch": 0.4, "timing": 0.25, "stability": 0.2, "words": 0.15}

PRACTICE_WEIGHTS = {
    "full": DEFAULT_WEIGHTS,
    "words": {"pitch": 0.1, "timing": 0.15, "stability": 0.05, "words": 0.7},
    "timing": {"pitch": 0.1, "timing": 0.7, "stability": 0.05, "words": 0.15},
    "pitch": {"pitch": 0.7, "timing": 0.1, "stability": 0.2, "words": 0.0},
}


def resolve_weights(mode: Optional[str] = None) -> dict:
    """Weights for a practice mode; unknown or missing modes use the full-song weights."""
    return PRACTICE_WEIGHTS.get(mode or "full", DEFAULT_WEIGHTS)


def compute_overall_score(subscores: Subscores, mode: Optional[str] = None) -> int:
    """Weighted 0-100 overall score for one attempt."""
    weights = resolve_weights(mode)
    total = sum(weights.values()) or 1.0
    overall = (
        subscores.pitch * weights["pitch"]
        + subscores.timing * weights["timing"]
        + subscores.stability * weights["stability"]
        + subscores.word * weights["words"]
    ) / total
    score = clamp_score(overall)
    logger.info(
        "Overall score (%s): %d  pitch=%d  timing=%d  stability=%d  words=%d",
        mode or "full", score, subscores.pitch, subscores.timing, subscores.stability, subscores.word,
    )
    return score


# ---------------------------------------------------------------------------
# Per-line pitch
# ---------------------------------------------------------------------------

def score_lines(
    reference: AudioSignal,
    user: AudioSignal,
    lines: Sequence[ReferenceLine],
    offset_sec: float = 0.0,
    hop_sec: float = DEFAULT_HOP_SEC,
    frame_sec: float = DEFAULT_FRAME_SEC,
) -> list[LinePitchResult]:
    """Compare user and reference pitch within each reference line.

    The user window is the line's reference window shifted by *offset_sec*.
    """
    results = []
    for line in lines:
        if line.end <= line.start:
            continue
        ref_contour = extract_contour(reference, line.start, line.end, hop_sec, frame_sec)
        user_start = max(0.0, line.start + offset_sec)
        user_contour = extract_contour(user, user_start, line.end + offset_sec, hop_sec, frame_sec)
        results.append(LinePitchResult(
            line_index=line.index,
            text=line.text,
            metrics=compute_contour_metrics(user_contour),
            comparison=compare_contours(user_contour, ref_contour),
        ))
    return results
