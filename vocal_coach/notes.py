"""
Note segmentation and note-level intonation coaching.

Contiguous voiced frames are grouped into notes (split on pitch jumps and
silent gaps); user notes are matched to reference notes by time overlap and
scored by their cents error.
"""

import logging
from typing import Sequence

from vocal_coach.models import Drill, NoteCoach, NoteEvent, NoteMatch, PitchContour, WorstNote
from vocal_coach.pitch import hz_to_midi, midi_to_note_name
from vocal_coach.stats import clamp_score, median, round_half_up, stddev

logger = logging.getLogger(__name__)

SPLIT_CENTS = 80.0
GAP_SEC = 0.12
MIN_OVERLAP_SEC = 0.08
BIAS_TIP_CENTS = 25
LANDING_TIP_CENTS = 60
WORST_NOTE_COUNT = 4

NOT_ENOUGH_DATA_TIP = "Not enough stable notes detected to score intonation."

NOTE_MATCHING_DRILL = Drill(
    category="notes",
    title="Note matching drill",
    steps=("Hum a single note for 2 seconds, then sing it with words.",),
    repeat_count=2,
)

INTONATION_DRILL = Drill(
    category="notes",
    title="Intonation drill",
    steps=(
        "Hum the target note for 2 seconds.",
        "Sing the word on 'oo' twice, then add the lyric.",
        "Repeat the phrase slowly 3 times.",
    ),
    repeat_count=3,
)


# ---------------------------------------------------------------------------
# Segmentation
# ---------------------------------------------------------------------------

def _close_note(members: list[tuple[float, float]]) -> NoteEvent:
    midis = [m for _, m in members]
    mid = median(midis)
    spread = stddev([(m - mid) * 100 for m in midis])
    return NoteEvent(
        start=members[0][0],
        end=members[-1][0],
        midi=mid,
        note=midi_to_note_name(mid),
        cents=round_half_up((mid - round_half_up(mid)) * 100),
        stability=clamp_score(100 - 1.2 * spread),
    )


def extract_note_events(
    contour: PitchContour,
    split_cents: float = SPLIT_CENTS,
    gap_sec: float = GAP_SEC,
) -> list[NoteEvent]:
    """Group the voiced frames of *contour* into note events."""
    events: list[NoteEvent] = []
    current: list[tuple[float, float]] = []
    last_voiced_t = None
    last_midi = None

    for frame in contour.frames:
        if not frame.voiced:
            if last_voiced_t is not None and frame.t - last_voiced_t > gap_sec:
                if current:
                    events.append(_close_note(current))
                    current = []
                last_midi = None
            continue

        midi = hz_to_midi(frame.f0)
        if last_midi is not None and abs(midi - last_midi) * 100 > split_cents and current:
            events.append(_close_note(current))
            current = []
        current.append((frame.t, midi))
        last_midi = midi
        last_voiced_t = frame.t

    if current:
        events.append(_close_note(current))
    return events


# ---------------------------------------------------------------------------
# Matching & coaching
# ---------------------------------------------------------------------------

def match_notes(user_notes: Sequence[NoteEvent], reference_notes: Sequence[NoteEvent]) -> list[NoteMatch]:
    """Pair each user note with the reference note it overlaps most."""
    matches: list[NoteMatch] = []
    for user in user_notes:
        best = None
        best_overlap = 0.0
        for ref in reference_notes:
            overlap = min(user.end, ref.end) - max(user.start, ref.start)
            if overlap > best_overlap:
                best_overlap = overlap
                best = ref
        if best is None or best_overlap < MIN_OVERLAP_SEC:
            continue
        matches.append(NoteMatch(
            user=user,
            reference=best,
            overlap=best_overlap,
            cents_off=round_half_up((user.midi - best.midi) * 100),
        ))
    return matches


def _not_enough_data() -> NoteCoach:
    return NoteCoach(enough_data=False, tips=(NOT_ENOUGH_DATA_TIP,), drill=NOTE_MATCHING_DRILL)


def build_note_coach(user_notes: Sequence[NoteEvent], reference_notes: Sequence[NoteEvent]) -> NoteCoach:
    """Score note-level intonation of the user against the reference.

    Returns the fixed "not enough data" payload (scores left unset) when
    either side has no notes or nothing overlaps.
    """
    if not user_notes or not reference_notes:
        logger.info("Note coach skipped: %d user notes, %d reference notes",
                    len(user_notes), len(reference_notes))
        return _not_enough_data()

    matches = match_notes(user_notes, reference_notes)
    if not matches:
        logger.info("Note coach skipped: no overlapping notes")
        return _not_enough_data()

    abs_errors = [abs(m.cents_off) for m in matches]
    med_abs = median(abs_errors)
    pct50 = sum(1 for e in abs_errors if e <= 50) / len(abs_errors)
    bias = median([m.cents_off for m in matches])

    ranked = sorted(matches, key=lambda m: abs(m.cents_off), reverse=True)[:WORST_NOTE_COUNT]
    worst = tuple(
        WorstNote(
            note=m.reference.note,
            start=m.user.start,
            cents_off=m.cents_off,
            direction="sharp" if m.cents_off > 0 else "flat",
        )
        for m in ranked
    )

    tips = []
    if bias > BIAS_TIP_CENTS:
        tips.append(f"You are sharp by about {round_half_up(bias)} cents on average.")
    elif bias < -BIAS_TIP_CENTS:
        tips.append(f"You are flat by about {round_half_up(abs(bias))} cents on average.")
    if med_abs > LANDING_TIP_CENTS:
        tips.append("Land the target note sooner before adding vibrato.")
    if worst:
        tips.append(f"Focus the note {worst[0].note} where intonation drifts.")

    return NoteCoach(
        enough_data=True,
        note_accuracy_score=clamp_score(100 - 0.9 * med_abs - 25 * (1 - pct50)),
        intonation_score=clamp_score(100 - 0.8 * med_abs),
        bias_cents=round_half_up(bias),
        median_abs_cents=round_half_up(med_abs),
        pct_within_50_cents=pct50,
        matched_count=len(matches),
        worst_notes=worst,
        tips=tuple(tips),
        drill=INTONATION_DRILL,
    )
