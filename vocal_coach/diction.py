"""
Per-word diction clarity scoring.

Each reference word gets four features (energy, onset strength, spectral
centroid, zero-crossing rate) measured on the user recording. Features are
normalized across the attempt with a 10th/90th percentile min-max so one
loud word doesn't flatten the rest.
"""

import logging
from collections import Counter
from typing import Callable, Optional, Sequence

from vocal_coach.models import AudioSignal, DictionCoach, DictionWord, Drill, ReferenceWord, WordFeedback
from vocal_coach.spectrum import spectral_centroid
from vocal_coach.stats import clamp, mean, percentile, rms, round_half_up, zero_crossing_rate

logger = logging.getLogger(__name__)

WINDOW_PAD_SEC = 0.08
CENTROID_SAMPLES = 1024
LOW_RMS = 0.008
MIN_CLEAR_WORD_CLARITY = 30
MIN_CLEAR_WORD_FRACTION = 0.3
WORST_WORD_COUNT = 5

WEIGHT_ONSET = 0.35
WEIGHT_ENERGY = 0.25
WEIGHT_CENTROID = 0.2
WEIGHT_ZCR = 0.2

ISSUE_TIPS = {
    "pronunciation mismatch": "Some words are articulated but do not match the reference. Slow down and shape the vowels.",
    "soft consonant": "Consonant starts are soft. Lean into the first consonant of each word.",
    "muffled": "Brighten the tone slightly for clearer diction.",
    "weak energy": "Projection is low. Try a slightly stronger, supported airflow.",
}
FILLER_TIP = "Speak the line in rhythm once, then sing it again with clear word starts."


def _normalizer(values: Sequence[float]) -> Callable[[float], float]:
    p10 = percentile(values, 0.1)
    p90 = percentile(values, 0.9)
    span = (p90 - p10) or 1e-6
    return lambda v: clamp((v - p10) / span, 0.0, 1.0)


def _no_words_payload() -> DictionCoach:
    return DictionCoach(
        clarity_score=0,
        low_confidence=True,
        top_issues=("No reference words available",),
        tips=("Re-run transcription to enable diction coaching.",),
        drill=Drill(
            category="diction",
            title="Clear words drill",
            steps=("Speak the line slowly once, then sing it once.",),
            repeat_count=2,
        ),
        message="No reference words available",
    )


def _low_confidence_payload(words: tuple[DictionWord, ...]) -> DictionCoach:
    return DictionCoach(
        clarity_score=0,
        low_confidence=True,
        words=words,
        worst_words=words[:WORST_WORD_COUNT],
        top_issues=("Low vocal clarity",),
        tips=("We did not capture enough clear articulation. Move closer and try again.",),
        drill=Drill(
            category="diction",
            title="Clear diction reset",
            steps=("Speak the line clearly once, then sing it softly with exaggerated consonants.",),
            repeat_count=2,
        ),
        message="Low vocal clarity",
    )


def build_diction_coach(
    signal: AudioSignal,
    reference_words: Sequence[ReferenceWord],
    word_feedback: Optional[Sequence[WordFeedback]] = None,
    offset_sec: float = 0.0,
) -> DictionCoach:
    """Score articulation clarity of every reference word in the user recording.

    Args:
        signal:          The user recording.
        reference_words: Words with reference timings.
        word_feedback:   Optional alignment statuses, keyed by ``ref_index``.
        offset_sec:      Shift applied to reference times to land in the recording.

    Returns:
        DictionCoach; a fixed low-confidence payload when there are no words
        or the recording is too quiet / unclear to score.
    """
    if not reference_words:
        return _no_words_payload()

    statuses = {fb.ref_index: fb.status for fb in (word_feedback or ())}
    duration = signal.duration
    pad = WINDOW_PAD_SEC

    features = []
    for word in reference_words:
        start = word.start + offset_sec
        end = word.end + offset_sec
        window = signal.segment(clamp(start - pad, 0, duration), clamp(end + pad, 0, duration))
        onset = max(0.0, rms(signal.segment(start, start + pad)) - rms(signal.segment(start - pad, start)))
        features.append({
            "word": word,
            "rms": rms(window),
            "zcr": zero_crossing_rate(window),
            "centroid": spectral_centroid(window[:CENTROID_SAMPLES], signal.sample_rate),
            "onset": onset,
            "status": statuses.get(word.index),
        })

    rms_norm = _normalizer([f["rms"] for f in features])
    zcr_norm = _normalizer([f["zcr"] for f in features])
    centroid_norm = _normalizer([f["centroid"] for f in features])
    onset_norm = _normalizer([f["onset"] for f in features])

    scored = []
    for f in features:
        energy = rms_norm(f["rms"])
        onset = onset_norm(f["onset"])
        zcr = zcr_norm(f["zcr"])
        clarity = (
            WEIGHT_ONSET * onset
            + WEIGHT_ENERGY * energy
            + WEIGHT_CENTROID * centroid_norm(f["centroid"])
            + WEIGHT_ZCR * zcr
        )
        issues = []
        if clarity < 0.35:
            issues.append("unclear articulation")
        if energy < 0.3:
            issues.append("weak energy")
        if onset < 0.3:
            issues.append("soft consonant")
        if zcr < 0.25:
            issues.append("muffled")
        if f["status"] in ("missed", "incorrect") and energy > 0.4:
            issues.append("pronunciation mismatch")

        scored.append(DictionWord(
            index=f["word"].index,
            word=f["word"].word,
            clarity=round_half_up(clamp(clarity * 100, 0, 100)),
            rms=f["rms"],
            onset_strength=f["onset"],
            centroid_hz=f["centroid"],
            zcr=f["zcr"],
            issues=tuple(issues),
            line_index=f["word"].line_index,
        ))
    words = tuple(scored)

    average_rms = mean([f["rms"] for f in features])
    clear_words = sum(1 for w in words if w.clarity > MIN_CLEAR_WORD_CLARITY)
    if average_rms < LOW_RMS or clear_words < len(words) * MIN_CLEAR_WORD_FRACTION:
        logger.info("Diction low confidence: avg rms %.4f, %d/%d clear words",
                    average_rms, clear_words, len(words))
        return _low_confidence_payload(words)

    clarity_score = round_half_up(mean([w.clarity for w in words]))

    counts = Counter(issue for w in words for issue in w.issues)
    top_issues = tuple(issue for issue, _ in counts.most_common(3))

    tips = [tip for issue, tip in ISSUE_TIPS.items() if issue in top_issues]
    if len(tips) < 3:
        tips.append(FILLER_TIP)

    worst = tuple(sorted(words, key=lambda w: w.clarity)[:WORST_WORD_COUNT])
    target_words = tuple(w.word for w in worst if w.word)
    target_line = worst[0].line_index if worst else None

    return DictionCoach(
        clarity_score=clarity_score,
        low_confidence=False,
        words=words,
        worst_words=worst,
        top_issues=top_issues,
        tips=tuple(tips[:5]),
        drill=Drill(
            category="diction",
            title="Diction drill",
            steps=(
                "Listen once to the reference line.",
                f"Speak the target words clearly 3 times: {', '.join(target_words[:3])}.",
                "Sing the line on one vowel, then add the real words.",
                "Record again with crisp consonants.",
            ),
            repeat_count=3,
            target_words=target_words,
            target_line_index=target_line,
        ),
    )
