from __future__ import annotations

import math
import queue
from dataclasses import dataclass

import numpy as np

from .dsp_utils import db_to_lin
from .saturation import CURVE_RESOLUTION, make_distortion_curve
from .settings import MasteringSettings

DEFAULT_TIME_CONSTANT = 0.05


@dataclass(frozen=True)
class SettingsCommand:
    """Control -> audio message: the new targets plus a replacement curve if saturation moved."""

    settings: MasteringSettings
    curve: np.ndarray | None = None


class SmoothedParameter:
    """Exponential approach toward a target, v(t) = target + (v0 - target) * exp(-t / tau)."""

    def __init__(self, value: float, sr: int, time_constant: float = DEFAULT_TIME_CONSTANT, smoothing: bool = True):
        self.sr = int(sr)
        self.time_constant = float(time_constant)
        self.smoothing = bool(smoothing) and self.time_constant > 0.0
        self._value = float(value)
        self._target = float(value)

    @property
    def value(self) -> float:
        return self._value

    @property
    def target(self) -> float:
        return self._target

    @property
    def settled(self) -> bool:
        return self._value == self._target

    def set_target(self, target: float) -> None:
        self._target = float(target)
        if not self.smoothing:
            self._value = self._target

    def next_block(self, n: int) -> np.ndarray:
        if self._value == self._target or n <= 0:
            return np.full(max(n, 0), self._target, dtype=np.float64)
        steps = np.arange(1, n + 1, dtype=np.float64)
        decay = np.exp(-steps / (self.time_constant * self.sr))
        values = self._target + (self._value - self._target) * decay
        last = float(values[-1])
        # Snap once the remaining distance is below float resolution of the target.
        if abs(last - self._target) <= 1e-9 * max(1.0, abs(self._target)):
            last = self._target
        self._value = last
        return values


def parameter_targets(settings: MasteringSettings) -> dict[str, float]:
    """Continuous parameters driven by a settings snapshot, in the units the graph consumes."""
    return {
        "input_gain": float(db_to_lin(settings.input_gain)),
        "eq_low": settings.eq_low,
        "eq_mid": settings.eq_mid,
        "eq_high": settings.eq_high,
        "width": settings.stereo_width / 100.0,
        "mb_low_threshold": settings.mb_low_threshold,
        "mb_mid_threshold": settings.mb_mid_threshold,
        "mb_high_threshold": settings.mb_high_threshold,
        "limiter_ceiling": settings.limiter_ceiling,
    }


class ParameterAutomation:
    """Parameter state owned by one graph.

    `post` is the only call made from the control context: it never blocks and
    only enqueues a command. `drain` and `next_block` run in the audio context,
    which also owns the smoothing state.
    """

    def __init__(
        self,
        settings: MasteringSettings,
        sr: int,
        time_constant: float = DEFAULT_TIME_CONSTANT,
        smoothing: bool = True,
        frozen: bool = False,
        curve_resolution: int = CURVE_RESOLUTION,
    ):
        self.sr = int(sr)
        self.frozen = bool(frozen)
        self.curve_resolution = int(curve_resolution)
        self.settings = settings.clamped()
        self._posted_saturation = self.settings.saturation
        self._commands: queue.SimpleQueue[SettingsCommand] = queue.SimpleQueue()
        self.parameters = {
            name: SmoothedParameter(value, self.sr, time_constant=time_constant, smoothing=smoothing)
            for name, value in parameter_targets(self.settings).items()
        }

    def post(self, settings: MasteringSettings) -> SettingsCommand:
        if self.frozen:
            raise RuntimeError("Offline graph settings are frozen at render start.")
        settings = settings.clamped()
        curve = None
        if settings.saturation != self._posted_saturation:
            curve = make_distortion_curve(settings.saturation, self.curve_resolution)
            self._posted_saturation = settings.saturation
        command = SettingsCommand(settings=settings, curve=curve)
        self._commands.put_nowait(command)
        return command

    def drain(self) -> np.ndarray | None:
        """Apply every pending command (latest wins); return a new curve if one arrived."""
        curve = None
        applied = None
        while True:
            try:
                command = self._commands.get_nowait()
            except queue.Empty:
                break
            applied = command
            if command.curve is not None:
                curve = command.curve
        if applied is not None:
            self.settings = applied.settings
            for name, target in parameter_targets(applied.settings).items():
                self.parameters[name].set_target(target)
        return curve

    def next_block(self, n: int) -> dict[str, np.ndarray]:
        return {name: param.next_block(n) for name, param in self.parameters.items()}

    @property
    def settled(self) -> bool:
        return all(param.settled for param in self.parameters.values())

    def time_to_settle(self, tolerance: float = 1e-6) -> float:
        """Seconds until every parameter is within `tolerance` (relative) of its target."""
        worst = 0.0
        for param in self.parameters.values():
            if param.settled or not param.smoothing:
                continue
            distance = abs(param.value - param.target)
            scale = max(1.0, abs(param.target)) * tolerance
            if distance > scale:
                worst = max(worst, param.time_constant * math.log(distance / scale))
        return worst
