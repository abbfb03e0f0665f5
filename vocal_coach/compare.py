"""
Frame-by-frame comparison of a user contour against a reference contour.
"""

import logging
from typing import Optional

from vocal_coach.models import ComparisonResult, PitchContour
from vocal_coach.pitch import cents_off
from vocal_coach.stats import clamp_score, median, round_half_up

logger = logging.getLogger(__name__)


def compare_contours(
    user: PitchContour,
    reference: PitchContour,
    offset_sec: float = 0.0,
) -> Optional[ComparisonResult]:
    """Align *user* onto *reference* by nearest reference hop and score the pitch error.

    Args:
        user:       Contour of the user's attempt.
        reference:  Contour of the reference recording.
        offset_sec: How much later the user started; subtracted from user times.

    Returns:
        ComparisonResult, or None when no frame pair is voiced on both sides.
    """
    if not user.frames or not reference.frames:
        return None

    ref_frames = reference.frames
    errors: list[float] = []
    voiced_user = 0
    for frame in user.frames:
        if not frame.voiced:
            continue
        voiced_user += 1
        idx = round_half_up((frame.t - offset_sec) / reference.hop_sec)
        if idx < 0 or idx >= len(ref_frames):
            continue
        ref = ref_frames[idx]
        if not ref.voiced:
            continue
        errors.append(cents_off(ref.f0, frame.f0))

    if not errors:
        logger.info("No overlapping voiced frames (%d voiced user frames)", voiced_user)
        return None

    abs_errors = [abs(e) for e in errors]
    mae = round_half_up(median(abs_errors))
    pct50 = sum(1 for e in abs_errors if e <= 50) / len(abs_errors)
    pct100 = sum(1 for e in abs_errors if e <= 100) / len(abs_errors)

    return ComparisonResult(
        median_abs_error_cents=mae,
        bias_cents=round_half_up(median(errors)),
        pct_within_50_cents=pct50,
        pct_within_100_cents=pct100,
        pitch_accuracy_score=clamp_score(100 - 1.2 * mae - 30 * (1 - pct50)),
        overlap_pct=min(1.0, len(errors) / max(1, voiced_user)),
    )
