"""
Data model for the analysis pipeline.

Field names are snake_case in Python; ``model_dump(by_alias=True)`` yields
the camelCase payload the front end reads (``pitchAccuracyScore`` etc.).
Everything except DrillSession is frozen once built.
"""

from typing import Literal, Optional

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Audio and pitch contours
# ---------------------------------------------------------------------------

class AudioSignal(CamelModel):
    """Decoded mono samples plus sample rate. The buffer is copied and made read-only."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    samples: np.ndarray
    sample_rate: int = Field(gt=0)

    @field_validator("samples", mode="before")
    @classmethod
    def _as_readonly_float32(cls, value):
        arr = np.array(value, dtype=np.float32).ravel()
        arr.setflags(write=False)
        return arr

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate

    def segment(self, start_sec: float, end_sec: float) -> np.ndarray:
        """Samples in [start_sec, end_sec), clipped to the buffer."""
        start = max(0, int(start_sec * self.sample_rate))
        end = min(len(self.samples), max(start, int(end_sec * self.sample_rate)))
        return self.samples[start:end]


class PitchFrame(CamelModel):
    t: float
    f0: Optional[float] = None
    voiced: bool = False
    rms: Optional[float] = None

    @model_validator(mode="after")
    def _f0_matches_voicing(self):
        if self.voiced != (self.f0 is not None):
            raise ValueError("f0 must be set exactly when the frame is voiced")
        return self


class PitchContour(CamelModel):
    frames: tuple[PitchFrame, ...] = ()
    sample_rate: int = Field(gt=0)
    hop_sec: float = Field(gt=0)

    @property
    def voiced_frames(self) -> list[PitchFrame]:
        return [f for f in self.frames if f.voiced]


class ContourMetrics(CamelModel):
    voiced_pct: float = 0.0
    median_f0_hz: float = 0.0
    cents_std_dev: float = 0.0
    cents_iqr: float = 0.0
    drift_cents_per_sec: float = 0.0
    vibrato_rate_hz: float = 0.0
    jitter_cents_rms: float = 0.0
    stability_score: int = 0
    low_confidence: bool = True


class ComparisonResult(CamelModel):
    median_abs_error_cents: int
    bias_cents: int
    pct_within_50_cents: float
    pct_within_100_cents: float
    pitch_accuracy_score: int
    overlap_pct: float


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------

class NoteEvent(CamelModel):
    start: float
    end: float
    midi: float
    note: str
    cents: int
    stability: int


class NoteMatch(CamelModel):
    user: NoteEvent
    reference: NoteEvent
    overlap: float
    cents_off: int


class WorstNote(CamelModel):
    note: str
    start: float
    cents_off: int
    direction: Literal["sharp", "flat"]


class Drill(CamelModel):
    category: str
    title: str
    steps: tuple[str, ...] = ()
    repeat_count: int = 3
    target_line_index: Optional[int] = None
    target_words: tuple[str, ...] = ()


class NoteCoach(CamelModel):
    enough_data: bool
    note_accuracy_score: Optional[int] = None
    intonation_score: Optional[int] = None
    bias_cents: Optional[int] = None
    median_abs_cents: Optional[int] = None
    pct_within_50_cents: Optional[float] = None
    matched_count: int = 0
    worst_notes: tuple[WorstNote, ...] = ()
    tips: tuple[str, ...] = ()
    drill: Drill


# ---------------------------------------------------------------------------
# Transcript / alignment inputs
# ---------------------------------------------------------------------------

WordStatus = Literal["correct", "correct_early", "correct_late", "incorrect", "missed", "extra_ignored"]
CORRECT_STATUSES = ("correct", "correct_early", "correct_late")


class ReferenceWord(CamelModel):
    word: str
    start: float
    end: float
    index: int
    line_index: Optional[int] = None


class ReferenceLine(CamelModel):
    text: str
    start: float
    end: float
    index: int


class WordFeedback(CamelModel):
    ref_index: int
    ref_word: str = ""
    ref_start: float = 0.0
    ref_end: float = 0.0
    status: WordStatus
    user_word: Optional[str] = None
    user_start: Optional[float] = None
    user_end: Optional[float] = None
    delta_ms: Optional[float] = None
    confidence: Optional[float] = None
    line_index: Optional[int] = None


class OffsetEstimate(CamelModel):
    offset_ms: float
    method: Literal["xcorr", "onset", "none"]
    correlation: float = 0.0


# ---------------------------------------------------------------------------
# Coach sub-results
# ---------------------------------------------------------------------------

class TimingMetrics(CamelModel):
    mean_abs_ms: float = 0.0
    median_ms: float = 0.0
    within_120_pct: float = 0.0
    slope_ms_per_sec: float = 0.0
    count: int = 0


class WordCoach(CamelModel):
    word_accuracy_pct: float
    missed_words: tuple[str, ...] = ()
    extra_words: tuple[str, ...] = ()
    rushed_lines: tuple[int, ...] = ()
    late_lines: tuple[int, ...] = ()
    tips: tuple[str, ...] = ()


class DictionWord(CamelModel):
    index: int
    word: str
    clarity: int
    rms: float
    onset_strength: float
    centroid_hz: float
    zcr: float
    issues: tuple[str, ...] = ()
    line_index: Optional[int] = None


class DictionCoach(CamelModel):
    clarity_score: int
    low_confidence: bool
    words: tuple[DictionWord, ...] = ()
    worst_words: tuple[DictionWord, ...] = ()
    top_issues: tuple[str, ...] = ()
    tips: tuple[str, ...] = ()
    drill: Drill
    message: Optional[str] = None


class BreathCoach(CamelModel):
    phrasing_score: int
    low_confidence: bool
    tail_drop_count: int = 0
    extra_breaths_count: int = 0
    tail_drop_lines: tuple[int, ...] = ()
    extra_breath_lines: tuple[int, ...] = ()
    tips: tuple[str, ...] = ()
    drill: Drill


class LinePitchResult(CamelModel):
    line_index: int
    text: str = ""
    metrics: ContourMetrics
    comparison: Optional[ComparisonResult] = None


class PitchCoach(CamelModel):
    pitch_accuracy_score: int
    stability_score: int
    low_confidence: bool
    has_comparison: bool
    bias_cents: Optional[int] = None
    median_abs_error_cents: Optional[int] = None
    pct_within_50_cents: Optional[float] = None
    voiced_pct: float = 0.0
    issues: tuple[str, ...] = ()
    worst_lines: tuple[int, ...] = ()
    tips: tuple[str, ...] = ()
    drill: Drill


class Subscores(CamelModel):
    word: int
    timing: int
    pitch: int
    stability: int


class CoachResult(CamelModel):
    subscores: Subscores
    top_issues: tuple[str, ...] = ()
    issue_categories: tuple[str, ...] = ()
    tips: tuple[str, ...] = ()
    drill: Drill
    summary: str
    focus_line: Optional[int] = None
    low_confidence: bool = False


class CoachCard(CamelModel):
    category: str
    title: str
    score: Optional[int] = None
    items: tuple[str, ...] = ()
    tips: tuple[str, ...] = ()
    drill: Optional[Drill] = None


# ---------------------------------------------------------------------------
# Drill sessions
# ---------------------------------------------------------------------------

DrillFocus = Literal["words", "timing", "pitch", "diction", "breath", "notes"]
DrillStatus = Literal["active", "passed", "failed"]


class UnifiedMetrics(CamelModel):
    timing_mean_abs_ms: Optional[float] = None
    timing_correlation: Optional[float] = None
    pace_ratio: Optional[float] = None
    word_accuracy_pct: Optional[float] = None
    coverage_pct: Optional[float] = None
    bias_cents: Optional[float] = None
    median_abs_error_cents: Optional[float] = None
    pct_within_50_cents: Optional[float] = None
    voiced_pct: Optional[float] = None
    pitch_accuracy_score: Optional[float] = None
    pitch_stability_score: Optional[float] = None
    diction_clarity_score: Optional[float] = None
    diction_low_confidence: Optional[bool] = None
    note_accuracy_score: Optional[float] = None
    note_bias_cents: Optional[float] = None
    phrasing_score: Optional[float] = None
    extra_breaths_count: Optional[int] = None
    tail_drop_count: Optional[int] = None
    missed_words_count: Optional[int] = None
    extra_words_count: Optional[int] = None


class PassCondition(CamelModel):
    metric: str
    direction: Literal["gte", "lte"]
    threshold: float
    improve_by: float
    min_voiced_pct: Optional[float] = None


class FocusSelection(CamelModel):
    focus: DrillFocus
    title: str
    reason: str
    target_line_index: Optional[int] = None


class RepResult(CamelModel):
    rep: int
    metrics: UnifiedMetrics
    passed: bool
    guard_failed: bool = False
    summary: str


class DrillSession(CamelModel):
    """Mutable progress record for one coaching focus; reps are append-only."""

    model_config = ConfigDict(frozen=False)

    id: str
    focus: DrillFocus
    title: str
    target_line_index: Optional[int] = None
    repeat_count: int = Field(3, ge=1)
    current_rep: int = 0
    pass_condition: PassCondition
    reps: list[RepResult] = Field(default_factory=list)
    status: DrillStatus = "active"


# ---------------------------------------------------------------------------
# Recording quality
# ---------------------------------------------------------------------------

class AudioStats(CamelModel):
    peak: float = 0.0
    rms: float = 0.0
    clip_pct: float = 0.0
    noise_floor: float = 0.0
    snr_db: float = 0.0
    frame_count: int = 0


class CalibrationResult(CamelModel):
    ok: bool
    warnings: tuple[str, ...] = ()
    guidance: tuple[str, ...] = ()


class SilenceReport(CamelModel):
    silent_pct: float
    mean_rms: float = 0.0
    peak_rms: float = 0.0
    near_silent: bool
    window_count: int


# ---------------------------------------------------------------------------
# Live feedback
# ---------------------------------------------------------------------------

class LiveReference(CamelModel):
    words: tuple[ReferenceWord, ...] = ()
    lines: tuple[ReferenceLine, ...] = ()
    median_f0_hz: float = 0.0


class LiveMetrics(CamelModel):
    t: float
    voiced: bool
    rms: float
    f0: Optional[float] = None
    cents_off: Optional[float] = None
    pitch_label: Literal["on_pitch", "sharp", "flat", "none"] = "none"
    energy_label: Literal["quiet", "ok", "loud"] = "quiet"
    clarity_label: Literal["clear", "muffled", "none"] = "none"
    stability_score: Optional[int] = None
    timing_label: Literal["on_time", "early", "late", "none"] = "none"
    timing_offset_ms: Optional[float] = None
    pace_ratio: Optional[float] = None
    expected_word_index: Optional[int] = None
    tip: Optional[str] = None


# ---------------------------------------------------------------------------
# Batch pipeline output
# ---------------------------------------------------------------------------

class SignalFeatures(CamelModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    contour: PitchContour
    metrics: ContourMetrics
    envelope: np.ndarray


class AttemptAnalysis(CamelModel):
    offset: OffsetEstimate
    user_metrics: ContourMetrics
    reference_metrics: ContourMetrics
    comparison: Optional[ComparisonResult] = None
    user_notes: tuple[NoteEvent, ...] = ()
    reference_notes: tuple[NoteEvent, ...] = ()
    note_coach: NoteCoach
    timing: TimingMetrics
    word_coach: WordCoach
    pitch_coach: PitchCoach
    diction: DictionCoach
    breath: BreathCoach
    coach: CoachResult
    cards: tuple[CoachCard, ...] = ()
    line_results: tuple[LinePitchResult, ...] = ()
    overall_score: int
    unified_metrics: UnifiedMetrics
