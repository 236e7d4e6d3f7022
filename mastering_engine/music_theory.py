from __future__ import annotations

import math

import numpy as np

NOTE_NAMES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]

BPM_RANGE = (110.0, 155.0)


def pitch_class_for_freq(freqs: np.ndarray, reference_hz: float = 440.0) -> np.ndarray:
    """Map frequencies to pitch classes using 12-TET around A4=reference_hz."""
    freqs = np.asarray(freqs, dtype=np.float64)
    pcs = np.full(freqs.shape, fill_value=-1, dtype=int)
    mask = freqs > 0
    midi = 69.0 + 12.0 * np.log2(freqs[mask] / reference_hz)
    midi_round = np.round(midi).astype(int)
    pcs[mask] = midi_round % 12
    return pcs


def note_name_for_freq(freq: float, reference_hz: float = 440.0) -> str:
    if not math.isfinite(freq) or freq <= 0.0:
        return "Unknown"
    pc = int(pitch_class_for_freq(np.array([freq]), reference_hz)[0])
    return NOTE_NAMES[pc]


def fold_bpm(bpm: float, lo: float = BPM_RANGE[0], hi: float = BPM_RANGE[1]) -> float:
    """
    Double/halve into [lo, hi]. The range is narrower than an octave, so a value
    that jumps over it while halving is clamped to the nearest edge.
    """
    if not math.isfinite(bpm) or bpm <= 0.0:
        raise ValueError(f"Cannot fold tempo {bpm!r}")
    while bpm < lo:
        bpm *= 2.0
    while bpm > hi:
        bpm /= 2.0
    return min(hi, max(lo, bpm))
