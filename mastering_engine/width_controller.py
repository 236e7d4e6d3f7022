from __future__ import annotations

import numpy as np

from .dsp_utils import mid_side_merge, mid_side_split


class WidthController:
    """Mid/Side matrix: scale the side channel by width/100 and decode back to L/R.

    0% folds to mono, 100% is a pass-through and anything above exaggerates the
    side signal (out-of-phase content included).
    """

    def encode(self, stereo: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        return mid_side_split(stereo)

    def decode(self, mid: np.ndarray, side: np.ndarray) -> np.ndarray:
        return mid_side_merge(mid, side)

    def process(self, stereo: np.ndarray, width: float | np.ndarray) -> np.ndarray:
        """`width` is a ratio (1.0 == 100%), scalar or one value per sample."""
        mid, side = self.encode(stereo)
        return self.decode(mid, side * np.asarray(width, dtype=np.float64))
