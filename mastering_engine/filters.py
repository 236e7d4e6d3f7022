from __future__ import annotations

import functools
import math

import numpy as np
from scipy.signal import lfilter

FILTER_TYPES = ("lowpass", "highpass", "lowshelf", "highshelf", "peaking")

# Implicit resonance for the pass filters is 1 dB, expressed as a linear Q.
PASS_Q = 10.0 ** (1.0 / 20.0)
PEAKING_Q = 1.0
SHELF_SLOPE = 1.0


@functools.lru_cache(maxsize=1024)
def biquad_coefficients(kind: str, sr: int, f0: float, gain_db: float = 0.0) -> tuple[np.ndarray, np.ndarray]:
    """
    Second-order section from the RBJ Audio EQ Cookbook.
    Returns normalized (b, a) with a[0] == 1.
    """
    if kind not in FILTER_TYPES:
        raise ValueError(f"Unknown filter type {kind!r}")
    f0 = float(max(1.0, min(0.49 * sr, f0)))
    w0 = 2.0 * math.pi * (f0 / sr)
    cos_w0 = math.cos(w0)
    sin_w0 = math.sin(w0)
    A = 10.0 ** (gain_db / 40.0)

    if kind == "lowpass":
        alpha = sin_w0 / (2.0 * PASS_Q)
        b = [(1.0 - cos_w0) / 2.0, 1.0 - cos_w0, (1.0 - cos_w0) / 2.0]
        a = [1.0 + alpha, -2.0 * cos_w0, 1.0 - alpha]
    elif kind == "highpass":
        alpha = sin_w0 / (2.0 * PASS_Q)
        b = [(1.0 + cos_w0) / 2.0, -(1.0 + cos_w0), (1.0 + cos_w0) / 2.0]
        a = [1.0 + alpha, -2.0 * cos_w0, 1.0 - alpha]
    elif kind == "peaking":
        alpha = sin_w0 / (2.0 * PEAKING_Q)
        b = [1.0 + alpha * A, -2.0 * cos_w0, 1.0 - alpha * A]
        a = [1.0 + alpha / A, -2.0 * cos_w0, 1.0 - alpha / A]
    else:
        alpha = sin_w0 / 2.0 * math.sqrt((A + 1.0 / A) * (1.0 / SHELF_SLOPE - 1.0) + 2.0)
        two_sqrt_a_alpha = 2.0 * math.sqrt(A) * alpha
        if kind == "lowshelf":
            b = [
                A * ((A + 1.0) - (A - 1.0) * cos_w0 + two_sqrt_a_alpha),
                2.0 * A * ((A - 1.0) - (A + 1.0) * cos_w0),
                A * ((A + 1.0) - (A - 1.0) * cos_w0 - two_sqrt_a_alpha),
            ]
            a = [
                (A + 1.0) + (A - 1.0) * cos_w0 + two_sqrt_a_alpha,
                -2.0 * ((A - 1.0) + (A + 1.0) * cos_w0),
                (A + 1.0) + (A - 1.0) * cos_w0 - two_sqrt_a_alpha,
            ]
        else:
            b = [
                A * ((A + 1.0) + (A - 1.0) * cos_w0 + two_sqrt_a_alpha),
                -2.0 * A * ((A - 1.0) + (A + 1.0) * cos_w0),
                A * ((A + 1.0) + (A - 1.0) * cos_w0 - two_sqrt_a_alpha),
            ]
            a = [
                (A + 1.0) - (A - 1.0) * cos_w0 + two_sqrt_a_alpha,
                2.0 * ((A - 1.0) - (A + 1.0) * cos_w0),
                (A + 1.0) - (A - 1.0) * cos_w0 - two_sqrt_a_alpha,
            ]

    a0 = a[0]
    b_arr = np.array([c / a0 for c in b], dtype=np.float64)
    a_arr = np.array([1.0, a[1] / a0, a[2] / a0], dtype=np.float64)
    b_arr.setflags(write=False)
    a_arr.setflags(write=False)
    return b_arr, a_arr


def apply_biquad(x: np.ndarray, sr: int, kind: str, f0: float, gain_db: float = 0.0) -> np.ndarray:
    """One-shot causal filtering along axis 0, starting from rest."""
    b, a = biquad_coefficients(kind, int(sr), float(f0), float(gain_db))
    return lfilter(b, a, x, axis=0)


class BiquadFilter:
    """Streaming biquad: filter state survives across blocks, so block size never changes the result."""

    def __init__(self, kind: str, sr: int, f0: float, gain_db: float = 0.0, channels: int = 2):
        self.kind = kind
        self.sr = int(sr)
        self.f0 = float(f0)
        self.gain_db = float(gain_db)
        self.channels = int(channels)
        self._b, self._a = biquad_coefficients(kind, self.sr, self.f0, self.gain_db)
        self._zi = np.zeros((2, self.channels), dtype=np.float64)

    def set_gain(self, gain_db: float) -> None:
        gain_db = float(gain_db)
        if gain_db == self.gain_db:
            return
        self.gain_db = gain_db
        self._b, self._a = biquad_coefficients(self.kind, self.sr, self.f0, gain_db)

    def process(self, block: np.ndarray) -> np.ndarray:
        if block.shape[0] == 0:
            return block
        out, self._zi = lfilter(self._b, self._a, block, axis=0, zi=self._zi)
        return out

    def magnitude_db(self, freq: float) -> float:
        """Steady-state response at `freq` Hz, handy for checking a design."""
        z = np.exp(-1j * 2.0 * math.pi * freq / self.sr)
        num = self._b[0] + self._b[1] * z + self._b[2] * z * z
        den = self._a[0] + self._a[1] * z + self._a[2] * z * z
        return float(20.0 * np.log10(max(abs(num / den), 1e-12)))
