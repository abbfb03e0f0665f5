"""
Live feedback while the user sings.

LiveFeedbackLoop pulls one short frame per tick from a frame source, keeps
rolling windows of recent pitch error and onset offsets, and pushes a
LiveMetrics snapshot to its listeners. Ticks run on a threading.Timer that is
re-armed only after the previous tick's listeners returned, so ticks never
overlap.
"""

import bisect
import logging
import threading
import time
from collections import deque
from typing import Callable, Optional, Protocol, Sequence

import numpy as np

from vocal_coach.config import AnalysisConfig
from vocal_coach.models import LiveMetrics, LiveReference, ReferenceLine, ReferenceWord
from vocal_coach.pitch import cents_off, detect_pitch
from vocal_coach.stats import clamp, clamp_score, mean, rms, round_half_up, stddev, zero_crossing_rate

logger = logging.getLogger(__name__)

RMS_VOICED = 0.012
RMS_QUIET = 0.018
RMS_LOUD = 0.12
ONSET_DELTA = 0.01
ONSET_MIN_GAP_SEC = 0.15
TIMING_THRESHOLD_SEC = 0.25
TIP_DEBOUNCE_SEC = 0.5
LATENCY_CLAMP_MS = 250
LATENCY_MAX_FIRST_WORD_SEC = 1.5
PITCH_LABEL_CENTS = 30
CLARITY_MIN_ZCR = 0.05
STABILITY_WINDOW_SEC = 1.4
ONSET_WINDOW_SEC = 2.5
RMS_SMOOTHING = 0.82
PACE_MIN_START_SEC = 0.2
PACE_RANGE = (0.6, 1.6)
UNSTABLE_SCORE = 60

DEFAULT_TIP = "Keep it steady."


class FrameSource(Protocol):
    def read_frame(self) -> Optional[np.ndarray]:
        ...


class TipDebouncer:
    """Two-slot tip state: a candidate must persist for ``hold_sec`` before it is shown."""

    def __init__(self, initial: str = DEFAULT_TIP, hold_sec: float = TIP_DEBOUNCE_SEC):
        self.committed = initial
        self.pending = ""
        self.pending_since = 0.0
        self.hold_sec = hold_sec

    def update(self, candidate: str, now: float) -> str:
        if candidate == self.committed:
            self.pending = ""
            return self.committed
        if candidate != self.pending:
            self.pending = candidate
            self.pending_since = now
            return self.committed
        if now - self.pending_since >= self.hold_sec:
            self.committed = candidate
            self.pending = ""
        return self.committed


def _expected_window(items: Sequence, starts: list[float], t: float):
    """The item being sung at *t*: the previous one while it lasts, else the next."""
    if not items:
        return None
    idx = bisect.bisect_left(starts, t)
    if idx == 0:
        return items[0]
    if idx >= len(items):
        return items[-1]
    prev = items[idx - 1]
    return prev if t <= prev.end else items[idx]


def _nearest_start(starts: list[float], t: float) -> Optional[float]:
    if not starts:
        return None
    idx = min(bisect.bisect_left(starts, t), len(starts) - 1)
    if idx == 0:
        return starts[0]
    prev, nxt = starts[idx - 1], starts[idx]
    return prev if abs(t - prev) <= abs(t - nxt) else nxt


class LiveFeedbackLoop:
    """Fixed-rate live coaching loop over an injected frame source.

    Args:
        source:      Object with ``read_frame()`` returning the latest samples
                     (or None when nothing is available) and optionally ``close()``.
        reference:   Reference word/line timing and median F0.
        sample_rate: Sample rate of the frames in Hz.
        update_hz:   Tick rate for ``start()``.
        clock:       Monotonic clock in seconds; injectable for tests.
    """

    def __init__(
        self,
        source: FrameSource,
        reference: LiveReference,
        sample_rate: int,
        update_hz: float = 15.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        if update_hz <= 0:
            raise ValueError("update_hz must be positive")
        self._source = source
        self._sample_rate = sample_rate
        self._interval = 1.0 / update_hz
        self._clock = clock

        self._words: list[ReferenceWord] = sorted(reference.words, key=lambda w: w.start)
        self._word_starts = [w.start for w in self._words]
        self._lines: list[ReferenceLine] = sorted(reference.lines, key=lambda line: line.start)
        self._line_starts = [line.start for line in self._lines]
        self._target_f0 = reference.median_f0_hz if reference.median_f0_hz > 0 else None

        self._listeners: list[Callable[[LiveMetrics], None]] = []
        self._lock = threading.RLock()
        self._timer: Optional[threading.Timer] = None
        self._stopped = False
        self._start_time: Optional[float] = None

        self._smooth_rms = 0.0
        self._last_rms = 0.0
        self._last_onset = 0.0
        self._mic_latency_ms = 0.0
        self._latency_locked = False
        self._recent_cents: deque = deque()
        self._onset_offsets: deque = deque()
        self._tip = TipDebouncer()

    @classmethod
    def from_config(
        cls,
        source: FrameSource,
        reference: LiveReference,
        sample_rate: int,
        config: AnalysisConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> "LiveFeedbackLoop":
        """Build a loop ticking at ``config.live_update_hz``."""
        return cls(source, reference, sample_rate, update_hz=config.live_update_hz, clock=clock)

    # -- listeners ---------------------------------------------------------

    def on_update(self, callback: Callable[[LiveMetrics], None]) -> Callable[[], None]:
        """Register *callback* for every tick; returns a function that removes it."""
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    @property
    def mic_latency_ms(self) -> float:
        return self._mic_latency_ms

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def update_hz(self) -> float:
        return 1.0 / self._interval

    # -- scheduling --------------------------------------------------------

    def start(self) -> None:
        with self._lock:
            if self._stopped:
                raise RuntimeError("LiveFeedbackLoop was stopped and cannot be restarted")
            if self._timer is not None:
                return
            if self._start_time is None:
                self._start_time = self._clock()
            logger.info("Live feedback started at %.1f Hz (%d reference words)",
                        self.update_hz, len(self._words))
            self._schedule()

    def _schedule(self) -> None:
        self._timer = threading.Timer(self._interval, self._run)
        self._timer.daemon = True
        self._timer.start()

    def _run(self) -> None:
        with self._lock:
            if self._stopped:
                return
            try:
                self.tick()
            except Exception:
                logger.exception("Live feedback tick failed; stopping")
                self.stop()
                return
            if not self._stopped:
                self._schedule()

    def stop(self) -> None:
        """Cancel the pending tick, close the source and drop all listeners."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            close = getattr(self._source, "close", None)
            if callable(close):
                close()
            self._listeners.clear()
            logger.info("Live feedback stopped")

    # -- per-tick processing -----------------------------------------------

    def tick(self, now: Optional[float] = None) -> Optional[LiveMetrics]:
        """Process one frame and notify listeners.

        Returns the metrics, or None when stopped or the source had no frame.
        """
        with self._lock:
            if self._stopped:
                return None
            now = self._clock() if now is None else now
            if self._start_time is None:
                self._start_time = now
            frame = self._source.read_frame()
            if frame is None:
                return None
            frame = np.asarray(frame, dtype=np.float32)
            metrics = self._process(frame, now)
            for callback in list(self._listeners):
                callback(metrics)
            return metrics

    def _process(self, frame: np.ndarray, now: float) -> LiveMetrics:
        raw_rms = rms(frame)
        self._smooth_rms = self._smooth_rms * RMS_SMOOTHING + raw_rms * (1 - RMS_SMOOTHING)
        level = self._smooth_rms
        zcr = zero_crossing_rate(frame)
        f0 = detect_pitch(frame, self._sample_rate) if level > RMS_VOICED else 0.0
        voiced = f0 > 0

        raw_time = max(0.0, now - self._start_time)
        t = max(0.0, raw_time - self._mic_latency_ms / 1000)

        cents = None
        if voiced and self._target_f0:
            cents = cents_off(self._target_f0, f0)
            self._recent_cents.append((t, cents))
        while self._recent_cents and t - self._recent_cents[0][0] > STABILITY_WINDOW_SEC:
            self._recent_cents.popleft()
        stability = clamp_score(100 - stddev([c for _, c in self._recent_cents]) * 1.2)

        pitch_label = "none"
        if voiced:
            pitch_label = "on_pitch"
            if cents is not None and cents < -PITCH_LABEL_CENTS:
                pitch_label = "flat"
            elif cents is not None and cents > PITCH_LABEL_CENTS:
                pitch_label = "sharp"

        energy_label = "quiet" if level < RMS_QUIET else "loud" if level > RMS_LOUD else "ok"
        if not voiced:
            clarity_label = "none"
        elif level > RMS_QUIET and zcr > CLARITY_MIN_ZCR:
            clarity_label = "clear"
        else:
            clarity_label = "muffled"

        self._track_onset(level, raw_time, t)

        while self._onset_offsets and t - self._onset_offsets[0][0] > ONSET_WINDOW_SEC:
            self._onset_offsets.popleft()
        timing_label = "none"
        pace_ratio = 1.0
        if self._onset_offsets:
            avg_offset = mean([offset for _, offset in self._onset_offsets])
            if avg_offset < -TIMING_THRESHOLD_SEC:
                timing_label = "early"
            elif avg_offset > TIMING_THRESHOLD_SEC:
                timing_label = "late"
            else:
                timing_label = "on_time"
            last_t = self._onset_offsets[-1][0]
            nearest = _nearest_start(self._word_starts, last_t)
            if nearest is not None and nearest > PACE_MIN_START_SEC:
                pace_ratio = clamp(last_t / nearest, *PACE_RANGE)

        expected = _expected_window(self._words, self._word_starts, t)
        candidate = self._tip_candidate(voiced, energy_label, pitch_label, timing_label, stability, clarity_label)

        return LiveMetrics(
            t=t,
            voiced=voiced,
            rms=clamp(level, 0.0, 1.0),
            f0=f0 if voiced else None,
            cents_off=cents,
            pitch_label=pitch_label,
            energy_label=energy_label,
            clarity_label=clarity_label,
            stability_score=stability,
            timing_label=timing_label,
            timing_offset_ms=round_half_up((t - expected.start) * 1000) if expected else None,
            pace_ratio=pace_ratio,
            expected_word_index=expected.index if expected else None,
            tip=self._tip.update(candidate, now),
        )

    def _track_onset(self, level: float, raw_time: float, t: float) -> None:
        is_onset = level - self._last_rms > ONSET_DELTA and level > RMS_QUIET
        self._last_rms = level
        if not is_onset or t - self._last_onset <= ONSET_MIN_GAP_SEC:
            return
        self._last_onset = t
        expected = _expected_window(self._words, self._word_starts, t)
        if expected is None:
            return
        if not self._latency_locked:
            first_start = self._words[0].start
            if first_start <= LATENCY_MAX_FIRST_WORD_SEC:
                latency = (raw_time - first_start) * 1000
                if abs(latency) <= LATENCY_CLAMP_MS:
                    self._mic_latency_ms = latency
                    self._latency_locked = True
                    logger.info("Mic latency locked at %.0f ms", latency)
        self._onset_offsets.append((t, t - expected.start))

    @staticmethod
    def _tip_candidate(voiced, energy_label, pitch_label, timing_label, stability, clarity_label) -> str:
        if not voiced:
            return "We can't detect pitch. Sing a bit louder and closer."
        if energy_label == "quiet":
            return "Too quiet. Project more on word starts."
        if energy_label == "loud":
            return "Too loud. Back off slightly for control."
        if pitch_label == "flat":
            return "You're drifting flat. Raise the pitch slightly."
        if pitch_label == "sharp":
            return "You're sharp. Relax and aim a touch lower."
        if timing_label == "early":
            return "You're rushing. Enter with the cue."
        if timing_label == "late":
            return "You're late. Push forward to the beat."
        if stability < UNSTABLE_SCORE:
            return "Pitch is wobbly. Steady the sustain."
        if clarity_label == "muffled":
            return "Articulation is unclear. Lean into consonants."
        return "Nice. Keep it steady."

    def expected_line(self, t: float) -> Optional[ReferenceLine]:
        """The reference line being sung at time *t*."""
        return _expected_window(self._lines, self._line_starts, t)
