"""
Shared fixtures for vocal_coach tests.
"""

import numpy as np
import pytest

from vocal_coach.models import AudioSignal, PitchContour, PitchFrame, ReferenceLine, ReferenceWord, WordFeedback


def make_tone(freq, duration, sr=22050, amplitude=0.5):
    """Sine wave as float32 samples."""
    t = np.linspace(0, duration, int(round(sr * duration)), endpoint=False)
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def make_contour(f0s, hop_sec=0.02, sr=22050):
    """Contour from a list of F0 values; None marks an unvoiced frame."""
    frames = tuple(
        PitchFrame(t=i * hop_sec, f0=f0, voiced=f0 is not None, rms=0.1 if f0 else 0.0)
        for i, f0 in enumerate(f0s)
    )
    return PitchContour(frames=frames, sample_rate=sr, hop_sec=hop_sec)


def make_feedback(status, index=0, delta_ms=None, **kwargs):
    return WordFeedback(ref_index=index, ref_word=kwargs.pop("ref_word", f"w{index}"),
                        status=status, delta_ms=delta_ms, **kwargs)


# ============== Audio Fixtures ==============

@pytest.fixture
def sample_rate():
    return 22050


@pytest.fixture
def sine_220(sample_rate):
    """One second of a 220 Hz sine."""
    return AudioSignal(samples=make_tone(220, 1.0, sample_rate), sample_rate=sample_rate)


@pytest.fixture
def silence(sample_rate):
    """One second of digital silence."""
    return AudioSignal(samples=np.zeros(sample_rate, dtype=np.float32), sample_rate=sample_rate)


@pytest.fixture
def phrase_signal(sample_rate):
    """Two sung lines (220 Hz then 247 Hz) separated by a short rest."""
    audio = np.concatenate([
        make_tone(220, 1.0, sample_rate),
        np.zeros(int(0.5 * sample_rate), dtype=np.float32),
        make_tone(247, 1.0, sample_rate),
    ])
    return AudioSignal(samples=audio, sample_rate=sample_rate)


# ============== Reference Fixtures ==============

@pytest.fixture
def reference_lines():
    return [
        ReferenceLine(text="first line here", start=0.0, end=1.0, index=0),
        ReferenceLine(text="second line now", start=1.5, end=2.5, index=1),
    ]


@pytest.fixture
def reference_words():
    words = ["first", "line", "here", "second", "line", "now"]
    starts = [0.0, 0.33, 0.66, 1.5, 1.83, 2.16]
    return [
        ReferenceWord(word=w, start=s, end=s + 0.3, index=i, line_index=0 if i < 3 else 1)
        for i, (w, s) in enumerate(zip(words, starts))
    ]


@pytest.fixture
def clean_feedback(reference_words):
    """Every word sung correctly within 40 ms."""
    return [
        WordFeedback(
            ref_index=w.index, ref_word=w.word, ref_start=w.start, ref_end=w.end,
            status="correct", user_word=w.word, user_start=w.start + 0.02,
            user_end=w.end + 0.02, delta_ms=20.0 if i % 2 else -40.0, confidence=0.9,
        )
        for i, w in enumerate(reference_words)
    ]
