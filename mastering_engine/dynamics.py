from __future__ import annotations

import math

import numpy as np

from .dsp_utils import db_to_lin, lin_to_db

DETECTOR_FLOOR_DB = -120.0


def _time_coefficient(ms: float, sr: int) -> float:
    return float(math.exp(-1.0 / (max(ms, 0.01) * 1e-3 * sr)))


def static_gain_db(level_db: np.ndarray, threshold_db: np.ndarray, ratio: float, knee_db: float) -> np.ndarray:
    """Gain reduction (<= 0 dB) of the compressor's static curve."""
    over = level_db - threshold_db
    slope = 1.0 / ratio - 1.0
    gain = np.where(over > 0.0, slope * over, 0.0)
    if knee_db > 0.0:
        in_knee = np.abs(over) <= 0.5 * knee_db
        knee_gain = slope * np.square(over + 0.5 * knee_db) / (2.0 * knee_db)
        gain = np.where(in_knee, knee_gain, gain)
    return gain


class Compressor:
    """Feed-forward compressor with a stereo-linked peak detector.

    Gain reduction is computed from the static curve and then smoothed with a
    one-pole attack/release follower whose state survives across blocks.
    """

    def __init__(
        self,
        sr: int,
        ratio: float,
        attack_ms: float = 3.0,
        release_ms: float = 250.0,
        knee_db: float = 6.0,
    ):
        self.sr = int(sr)
        self.ratio = float(max(ratio, 1.0))
        self.attack_ms = float(attack_ms)
        self.release_ms = float(release_ms)
        self.knee_db = float(max(knee_db, 0.0))
        self._att = _time_coefficient(self.attack_ms, self.sr)
        self._rel = _time_coefficient(max(self.release_ms, self.attack_ms), self.sr)
        self._gr_db = 0.0

    @property
    def gain_reduction_db(self) -> float:
        return float(self._gr_db)

    def process(self, block: np.ndarray, threshold_db: float | np.ndarray) -> np.ndarray:
        n = block.shape[0]
        if n == 0:
            return block
        detector = np.max(np.abs(block), axis=1)
        level = lin_to_db(detector, eps=10.0 ** (DETECTOR_FLOOR_DB / 20.0))
        threshold = np.broadcast_to(np.asarray(threshold_db, dtype=np.float64), (n,))
        target = static_gain_db(level, threshold, self.ratio, self.knee_db)

        att = self._att
        rel = self._rel
        cur = self._gr_db
        smoothed = np.empty(n, dtype=np.float64)
        for i, g in enumerate(target.tolist()):
            if g < cur:
                cur = att * cur + (1.0 - att) * g
            else:
                cur = rel * cur + (1.0 - rel) * g
            smoothed[i] = cur
        self._gr_db = cur
        return block * db_to_lin(smoothed)[:, None]
