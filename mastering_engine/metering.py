from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

import numpy as np

from .dsp_utils import SILENCE_DB, level_db, rms


@dataclass(frozen=True)
class MeterReading:
    rms_db: float = SILENCE_DB
    peak_db: float = SILENCE_DB


SILENT_READING = MeterReading()


class OutputTap:
    """Keeps the most recent `size` output frames for the meters.

    The audio side publishes a fresh array each block and readers grab the
    current reference, so neither side ever waits on the other.
    """

    def __init__(self, size: int = 2048, channels: int = 2):
        self.size = int(size)
        self.channels = int(channels)
        self._frames = np.zeros((self.size, self.channels), dtype=np.float64)

    def push(self, block: np.ndarray) -> None:
        n = block.shape[0]
        if n == 0:
            return
        if n >= self.size:
            frames = np.array(block[-self.size:], dtype=np.float64)
        else:
            frames = np.concatenate([self._frames[n:], block], axis=0)
        self._frames = frames

    def snapshot(self) -> np.ndarray:
        return self._frames

    def clear(self) -> None:
        self._frames = np.zeros((self.size, self.channels), dtype=np.float64)


class LiveMeter:
    """Ballistic RMS/peak meter fed from an output tap at a bounded refresh rate."""

    def __init__(
        self,
        interval: float = 0.05,
        rms_alpha: float = 0.3,
        peak_decay: float = 0.1,
        floor_db: float = SILENCE_DB,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.interval = float(interval)
        self.rms_alpha = float(rms_alpha)
        self.peak_decay = float(peak_decay)
        self.floor_db = float(floor_db)
        self.clock = clock
        self._rms_db = self.floor_db
        self._peak_db = self.floor_db
        self._last_update: float | None = None

    @property
    def reading(self) -> MeterReading:
        return MeterReading(
            rms_db=max(self.floor_db, self._rms_db),
            peak_db=max(self.floor_db, self._peak_db),
        )

    def reset(self) -> None:
        self._rms_db = self.floor_db
        self._peak_db = self.floor_db
        self._last_update = None

    def measure(self, samples: np.ndarray) -> MeterReading:
        """Instantaneous windowed levels of the mono sum, no smoothing."""
        samples = np.asarray(samples, dtype=np.float64)
        mono = samples.mean(axis=1) if samples.ndim == 2 else samples
        peak = float(np.max(np.abs(mono))) if mono.size else 0.0
        return MeterReading(
            rms_db=level_db(rms(mono), self.floor_db),
            peak_db=level_db(peak, self.floor_db),
        )

    def update(self, samples: np.ndarray, now: float | None = None) -> MeterReading:
        now = self.clock() if now is None else float(now)
        if self._last_update is not None and now - self._last_update < self.interval:
            return self.reading
        self._last_update = now

        current = self.measure(samples)
        self._rms_db = self._rms_db + self.rms_alpha * (current.rms_db - self._rms_db)
        decayed = self._peak_db + self.peak_decay * (current.peak_db - self._peak_db)
        self._peak_db = max(current.peak_db, decayed)
        return self.reading
