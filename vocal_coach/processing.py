"""
Batch analysis pipeline for one practice attempt.

Handles:
- Feature extraction (pitch contour, contour metrics, energy envelope)
- Envelope alignment between the user recording and the reference
- Running every coach and aggregating them into one AttemptAnalysis
"""

import logging
import time
from typing import Callable, Hashable, Optional, Sequence

from vocal_coach.alignment import compute_envelope, energy_correlation, estimate_offset
from vocal_coach.breath import build_breath_coach
from vocal_coach.coaching import build_coach_cards, build_coach_result, build_pitch_coach
from vocal_coach.compare import compare_contours
from vocal_coach.config import AnalysisConfig
from vocal_coach.contour import compute_contour_metrics, extract_contour
from vocal_coach.diction import build_diction_coach
from vocal_coach.drills import extract_unified_metrics
from vocal_coach.models import (
    AttemptAnalysis,
    AudioSignal,
    PitchContour,
    ReferenceLine,
    ReferenceWord,
    SignalFeatures,
    WordFeedback,
)
from vocal_coach.notes import build_note_coach, extract_note_events
from vocal_coach.scoring import compute_overall_score, score_lines
from vocal_coach.words import build_word_coach, compute_timing_metrics

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Contour cache
# ---------------------------------------------------------------------------

class ContourCache:
    """Key -> PitchContour store owned by the caller.

    Reference contours are the same for every attempt at a segment, so the
    orchestrator keeps one of these per session and passes it in. Keys are
    usually ``(reference_id, hop_sec, frame_sec)``.
    """

    def __init__(self):
        self._entries: dict[Hashable, PitchContour] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Optional[PitchContour]:
        return self._entries.get(key)

    def put(self, key: Hashable, contour: PitchContour) -> None:
        self._entries[key] = contour

    def get_or_compute(self, key: Hashable, compute: Callable[[], PitchContour]) -> PitchContour:
        contour = self._entries.get(key)
        if contour is not None:
            self.hits += 1
            return contour
        self.misses += 1
        contour = compute()
        self._entries[key] = contour
        return contour

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries


# ---------------------------------------------------------------------------
# Feature extraction
# ---------------------------------------------------------------------------

def extract_features(
    signal: AudioSignal,
    config: Optional[AnalysisConfig] = None,
    contour: Optional[PitchContour] = None,
) -> SignalFeatures:
    """Extract the pitch contour, its metrics and the energy envelope of a signal.

    Args:
        signal:  Decoded mono audio.
        config:  Window sizes; defaults to AnalysisConfig().
        contour: Precomputed contour (e.g. from a ContourCache) to reuse.

    Returns:
        SignalFeatures with contour, metrics and envelope.
    """
    config = config or AnalysisConfig()
    t0 = time.time()
    if contour is None:
        contour = extract_contour(signal, hop_sec=config.hop_sec, frame_sec=config.frame_sec)
    metrics = compute_contour_metrics(contour)
    envelope = compute_envelope(signal, config.envelope_step_sec)
    logger.info(
        "Features extracted: %d frames (%.0f%% voiced), %d envelope steps, %.1fs audio in %.2fs",
        len(contour.frames), metrics.voiced_pct * 100, envelope.size, signal.duration, time.time() - t0,
    )
    return SignalFeatures(contour=contour, metrics=metrics, envelope=envelope)


# ---------------------------------------------------------------------------
# Full attempt
# ---------------------------------------------------------------------------

def analyze_attempt(
    reference: AudioSignal,
    user: AudioSignal,
    reference_words: Sequence[ReferenceWord] = (),
    reference_lines: Sequence[ReferenceLine] = (),
    word_feedback: Sequence[WordFeedback] = (),
    pace_ratio: Optional[float] = None,
    practice_mode: str = "full",
    config: Optional[AnalysisConfig] = None,
    cache: Optional[ContourCache] = None,
    reference_id: Optional[str] = None,
) -> AttemptAnalysis:
    """Run the whole analysis for one attempt against its reference.

    Args:
        reference:       Reference vocal for the segment.
        user:            The user's recording of the same segment.
        reference_words: Word timings of the reference.
        reference_lines: Line timings of the reference.
        word_feedback:   Per-word alignment of the user's attempt.
        pace_ratio:      User/reference tempo ratio, when known.
        practice_mode:   ``full``, ``words``, ``timing`` or ``pitch``; picks score weights.
        config:          Window sizes; defaults to AnalysisConfig().
        cache:           Contour cache for the reference (needs *reference_id*).
        reference_id:    Stable id of the reference used as cache key.

    Returns:
        AttemptAnalysis with every sub-result, the coach result and the overall score.
    """
    config = config or AnalysisConfig()
    t0 = time.time()
    logger.info("Analyzing attempt: %.1fs user vs %.1fs reference (mode=%s)",
                user.duration, reference.duration, practice_mode)

    # -- Reference and user features --
    ref_contour = None
    if cache is not None and reference_id is not None:
        key = (reference_id, config.hop_sec, config.frame_sec)
        ref_contour = cache.get_or_compute(
            key, lambda: extract_contour(reference, hop_sec=config.hop_sec, frame_sec=config.frame_sec),
        )
    ref_features = extract_features(reference, config, contour=ref_contour)
    user_features = extract_features(user, config)

    # -- Alignment --
    offset = estimate_offset(
        ref_features.envelope, user_features.envelope,
        step_sec=config.envelope_step_sec, max_offset_ms=config.max_offset_ms,
    )
    offset_sec = offset.offset_ms / 1000
    timing_correlation = energy_correlation(ref_features.envelope, user_features.envelope)

    # -- Pitch and notes --
    comparison = compare_contours(user_features.contour, ref_features.contour, offset_sec)
    if comparison is None:
        logger.info("No pitch comparison basis; pitch coaching falls back to stability")
    user_notes = extract_note_events(user_features.contour)
    reference_notes = extract_note_events(ref_features.contour)
    note_coach = build_note_coach(user_notes, reference_notes)

    line_results = score_lines(
        reference, user, reference_lines, offset_sec,
        hop_sec=config.hop_sec, frame_sec=config.frame_sec,
    )
    pitch_coach = build_pitch_coach(user_features.metrics, comparison, line_results)

    # -- Words, diction, breath --
    timing = compute_timing_metrics(word_feedback)
    word_coach = build_word_coach(word_feedback, reference_lines)
    diction = build_diction_coach(user, reference_words, word_feedback, offset_sec)
    breath = build_breath_coach(user, user_features.contour, _shift_lines(reference_lines, offset_sec))

    # -- Aggregate --
    coach = build_coach_result(
        word_feedback=word_feedback,
        pitch_metrics=user_features.metrics,
        comparison=comparison,
        pitch_coach=pitch_coach,
        word_coach=word_coach,
        diction=diction,
        breath=breath,
        note_coach=note_coach,
        pace_ratio=pace_ratio,
        timing=timing,
    )
    cards = build_coach_cards(
        coach.subscores, timing,
        word_coach=word_coach, diction=diction, note_coach=note_coach,
        breath=breath, pitch_coach=pitch_coach,
    )
    overall = compute_overall_score(coach.subscores, practice_mode)
    unified = extract_unified_metrics(
        word_feedback=word_feedback,
        timing=timing,
        word_coach=word_coach,
        pitch_coach=pitch_coach,
        note_coach=note_coach,
        diction=diction,
        breath=breath,
        pace_ratio=pace_ratio,
        timing_correlation=timing_correlation,
        segment_duration_sec=reference.duration,
    )

    logger.info(
        "Attempt analyzed in %.2fs: overall=%d offset=%.0fms (%s) issues=%s",
        time.time() - t0, overall, offset.offset_ms, offset.method, list(coach.top_issues),
    )
    return AttemptAnalysis(
        offset=offset,
        user_metrics=user_features.metrics,
        reference_metrics=ref_features.metrics,
        comparison=comparison,
        user_notes=tuple(user_notes),
        reference_notes=tuple(reference_notes),
        note_coach=note_coach,
        timing=timing,
        word_coach=word_coach,
        pitch_coach=pitch_coach,
        diction=diction,
        breath=breath,
        coach=coach,
        cards=tuple(cards),
        line_results=tuple(line_results),
        overall_score=overall,
        unified_metrics=unified,
    )


def _shift_lines(lines: Sequence[ReferenceLine], offset_sec: float) -> list[ReferenceLine]:
    # reference line windows moved into recording time
    if not offset_sec:
        return list(lines)
    return [
        line.model_copy(update={"start": max(0.0, line.start + offset_sec), "end": max(0.0, line.end + offset_sec)})
        for line in lines
    ]
