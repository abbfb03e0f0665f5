"""
Unit tests for live.py - the live feedback loop and tip debouncing.
"""

import threading

import numpy as np
import pytest

from conftest import make_tone
from vocal_coach.config import AnalysisConfig
from vocal_coach.live import DEFAULT_TIP, LiveFeedbackLoop, TipDebouncer, _expected_window
from vocal_coach.models import LiveReference, ReferenceLine, ReferenceWord

SR = 22050
FRAME = 2048


class FakeSource:
    """Serves queued frames, then None."""

    def __init__(self, frames=()):
        self.frames = list(frames)
        self.closed = False

    def read_frame(self):
        return self.frames.pop(0) if self.frames else None

    def close(self):
        self.closed = True


class BrokenSource:
    def read_frame(self):
        raise IOError("device unplugged")


def tone_frame(freq=220.0, amplitude=0.5):
    return make_tone(freq, FRAME / SR, SR, amplitude=amplitude)


def quiet_frame():
    return np.zeros(FRAME, dtype=np.float32)


def words_at(*starts, length=0.3):
    return tuple(ReferenceWord(word=f"w{i}", start=s, end=s + length, index=i) for i, s in enumerate(starts))


class TestTipDebouncer:
    """Test the two-slot tip state."""

    def test_holds_candidate(self):
        """Test a new tip must persist for the hold time before it shows."""
        tips = TipDebouncer(hold_sec=0.5)
        assert tips.update("Too quiet.", 0.0) == DEFAULT_TIP
        assert tips.update("Too quiet.", 0.4) == DEFAULT_TIP
        assert tips.update("Too quiet.", 0.5) == "Too quiet."
        assert tips.pending == ""

    def test_flicker_resets(self):
        """Test a different candidate restarts the hold."""
        tips = TipDebouncer(hold_sec=0.5)
        tips.update("A", 0.0)
        tips.update("B", 0.3)
        assert tips.update("B", 0.6) == DEFAULT_TIP
        assert tips.update("B", 0.8) == "B"

    def test_committed_clears_pending(self):
        """Test returning to the shown tip drops the pending one."""
        tips = TipDebouncer()
        tips.update("A", 0.0)
        tips.update(DEFAULT_TIP, 0.1)
        assert tips.pending == ""
        assert tips.update("A", 0.7) == DEFAULT_TIP


class TestExpectedWindow:
    """Test the binary-search window lookup."""

    @pytest.mark.parametrize("t,index", [(-1.0, 0), (0.2, 0), (0.4, 1), (0.6, 1), (5.0, 1)])
    def test_lookup(self, t, index):
        """Test the current word lasts until its end, then the next takes over."""
        words = words_at(0.0, 0.5)
        assert _expected_window(words, [w.start for w in words], t).index == index

    def test_empty(self):
        """Test no items gives None."""
        assert _expected_window([], [], 1.0) is None


class TestLiveFeedbackLoop:
    """Test LiveFeedbackLoop ticks driven by hand."""

    def test_invalid_arguments(self):
        """Test non-positive rates are rejected."""
        with pytest.raises(ValueError):
            LiveFeedbackLoop(FakeSource(), LiveReference(), sample_rate=0)
        with pytest.raises(ValueError):
            LiveFeedbackLoop(FakeSource(), LiveReference(), sample_rate=SR, update_hz=0)

    def test_rate_from_config(self):
        """Test the loop built from a config ticks at its live update rate."""
        loop = LiveFeedbackLoop.from_config(FakeSource(), LiveReference(), SR, AnalysisConfig(live_update_hz=30.0))
        assert loop.update_hz == pytest.approx(30.0)
        assert LiveFeedbackLoop(FakeSource(), LiveReference(), SR).update_hz == pytest.approx(15.0)

    def test_silence(self):
        """Test silent frames are unvoiced with no labels."""
        loop = LiveFeedbackLoop(FakeSource([quiet_frame()]), LiveReference(words=words_at(0.0)), SR)
        metrics = loop.tick(now=0.0)
        assert metrics.voiced is False
        assert metrics.f0 is None
        assert metrics.pitch_label == "none"
        assert metrics.energy_label == "quiet"
        assert metrics.clarity_label == "none"
        assert metrics.timing_label == "none"
        assert metrics.pace_ratio == 1.0
        assert metrics.tip == DEFAULT_TIP

    def test_no_frame(self):
        """Test an empty source gives no metrics."""
        loop = LiveFeedbackLoop(FakeSource(), LiveReference(), SR)
        assert loop.tick(now=0.0) is None

    def test_on_pitch(self):
        """Test a tone at the reference F0 is voiced and on pitch."""
        loop = LiveFeedbackLoop(FakeSource([tone_frame(220.0)]), LiveReference(median_f0_hz=220.0), SR)
        metrics = loop.tick(now=0.0)
        assert metrics.voiced is True
        assert metrics.f0 == pytest.approx(220.0, rel=0.03)
        assert metrics.pitch_label == "on_pitch"
        assert metrics.energy_label == "ok"

    def test_flat(self):
        """Test a tone two semitones under the reference is flat."""
        loop = LiveFeedbackLoop(FakeSource([tone_frame(220.0)]), LiveReference(median_f0_hz=247.0), SR)
        metrics = loop.tick(now=0.0)
        assert metrics.pitch_label == "flat"
        assert metrics.cents_off < -150

    def test_no_target_is_on_pitch(self):
        """Test a voiced frame without a reference F0 counts as on pitch."""
        loop = LiveFeedbackLoop(FakeSource([tone_frame()]), LiveReference(), SR)
        metrics = loop.tick(now=0.0)
        assert metrics.pitch_label == "on_pitch"
        assert metrics.cents_off is None

    def test_onset_locks_latency(self):
        """Test an entrance near the first word locks mic latency and reads on time."""
        source = FakeSource([quiet_frame(), tone_frame()])
        loop = LiveFeedbackLoop(source, LiveReference(words=words_at(0.5, 1.0, 1.5)), SR)
        loop.tick(now=0.0)
        metrics = loop.tick(now=0.55)
        assert loop.mic_latency_ms == pytest.approx(50.0)
        assert metrics.timing_label == "on_time"
        assert metrics.timing_offset_ms == 50
        assert metrics.expected_word_index == 0
        assert metrics.pace_ratio == pytest.approx(1.1)

    def test_late_entrance(self):
        """Test an entrance far after the word is late and does not lock latency."""
        source = FakeSource([quiet_frame(), tone_frame()])
        loop = LiveFeedbackLoop(source, LiveReference(words=words_at(0.2)), SR)
        loop.tick(now=0.0)
        metrics = loop.tick(now=0.9)
        assert metrics.timing_label == "late"
        assert loop.mic_latency_ms == 0.0

    def test_unsubscribe(self):
        """Test a removed listener is not called again."""
        seen = []
        loop = LiveFeedbackLoop(FakeSource([quiet_frame(), quiet_frame()]), LiveReference(), SR)
        unsubscribe = loop.on_update(seen.append)
        loop.tick(now=0.0)
        unsubscribe()
        loop.tick(now=0.1)
        assert len(seen) == 1

    def test_stop(self):
        """Test stop closes the source, drops listeners and ends ticking."""
        seen = []
        source = FakeSource([quiet_frame()])
        loop = LiveFeedbackLoop(source, LiveReference(), SR)
        loop.on_update(seen.append)
        loop.stop()
        assert source.closed is True
        assert loop.stopped is True
        assert loop.tick(now=0.0) is None
        assert seen == []
        with pytest.raises(RuntimeError):
            loop.start()

    def test_failing_tick_stops_loop(self):
        """Test an exception from the source stops the loop."""
        loop = LiveFeedbackLoop(BrokenSource(), LiveReference(), SR)
        loop._run()
        assert loop.stopped is True

    def test_timer_delivers_updates(self):
        """Test start() ticks on its own until stopped."""
        fired = threading.Event()
        source = FakeSource([quiet_frame() for _ in range(50)])
        loop = LiveFeedbackLoop(source, LiveReference(), SR, update_hz=100.0)
        loop.on_update(lambda metrics: fired.set())
        loop.start()
        try:
            assert fired.wait(2.0)
        finally:
            loop.stop()
        assert source.closed is True

    def test_expected_line(self):
        """Test the line lookup uses the same window rule."""
        lines = (
            ReferenceLine(text="one", start=0.0, end=1.0, index=0),
            ReferenceLine(text="two", start=1.5, end=2.5, index=1),
        )
        loop = LiveFeedbackLoop(FakeSource(), LiveReference(lines=lines), SR)
        assert loop.expected_line(0.8).index == 0
        assert loop.expected_line(1.2).index == 1
