from __future__ import annotations

import math
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Mapping

from .dsp_utils import clamp

SETTING_RANGES: dict[str, tuple[float, float]] = {
    "input_gain": (-12.0, 12.0),
    "limiter_ceiling": (-3.0, 0.0),
    "saturation": (0.0, 100.0),
    "stereo_width": (0.0, 200.0),
    "eq_low": (-12.0, 12.0),
    "eq_mid": (-12.0, 12.0),
    "eq_high": (-12.0, 12.0),
    "mb_low_threshold": (-60.0, 0.0),
    "mb_mid_threshold": (-60.0, 0.0),
    "mb_high_threshold": (-60.0, 0.0),
}

# Names used by external control surfaces (UI knobs, assistant tool calls).
CAMEL_CASE_ALIASES: dict[str, str] = {
    "inputGain": "input_gain",
    "limiterCeiling": "limiter_ceiling",
    "saturation": "saturation",
    "stereoWidth": "stereo_width",
    "eqLow": "eq_low",
    "eqMid": "eq_mid",
    "eqHigh": "eq_high",
    "mbLowThreshold": "mb_low_threshold",
    "mbMidThreshold": "mb_mid_threshold",
    "mbHighThreshold": "mb_high_threshold",
}


@dataclass(frozen=True)
class MasteringSettings:
    input_gain: float = 0.0
    limiter_ceiling: float = -0.1
    saturation: float = 5.0
    stereo_width: float = 100.0
    eq_low: float = 0.0
    eq_mid: float = 0.0
    eq_high: float = 0.0
    mb_low_threshold: float = -16.0
    mb_mid_threshold: float = -16.0
    mb_high_threshold: float = -16.0

    def clamped(self) -> "MasteringSettings":
        """Pull every field into its documented range; NaN falls back to the default."""
        values = {}
        for f in fields(self):
            lo, hi = SETTING_RANGES[f.name]
            value = float(getattr(self, f.name))
            if math.isnan(value):
                value = float(f.default)
            values[f.name] = clamp(value, lo, hi)
        return MasteringSettings(**values)

    def with_updates(self, **changes: float) -> "MasteringSettings":
        """Apply any subset of fields in one step; the result is always clamped."""
        normalized = {}
        for key, value in changes.items():
            name = CAMEL_CASE_ALIASES.get(key, key)
            if name not in SETTING_RANGES:
                raise ValueError(f"Unknown mastering setting: {key!r}")
            normalized[name] = float(value)
        return replace(self, **normalized).clamped()

    def to_dict(self) -> dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MasteringSettings":
        return cls().with_updates(**dict(data))


def setting_range(name: str) -> tuple[float, float]:
    name = CAMEL_CASE_ALIASES.get(name, name)
    if name not in SETTING_RANGES:
        raise ValueError(f"Unknown mastering setting: {name!r}")
    return SETTING_RANGES[name]
