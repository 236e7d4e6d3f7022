from __future__ import annotations

import json
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import numpy as np

from .audio_engine import EngineConfig
from .dsp_utils import peak_dbfs, rms
from .settings import MasteringSettings

LOG = logging.getLogger("mastering_engine")


DEFAULT_PRESETS: dict[str, dict[str, Any]] = {
    "Default": {},
    "Club Loud": {
        "input_gain": 3.0,
        "limiter_ceiling": -0.3,
        "saturation": 20.0,
        "stereo_width": 110.0,
        "eq_low": 2.0,
        "eq_high": 1.5,
        "mb_low_threshold": -20.0,
        "mb_mid_threshold": -18.0,
        "mb_high_threshold": -16.0,
    },
    "Warm Tape": {
        "saturation": 35.0,
        "eq_low": 1.5,
        "eq_mid": -0.5,
        "eq_high": -2.0,
        "stereo_width": 95.0,
    },
    "Wide Techno": {
        "stereo_width": 140.0,
        "eq_low": 1.0,
        "eq_high": 2.0,
        "mb_low_threshold": -18.0,
    },
    "Mono Safe": {
        "stereo_width": 60.0,
        "limiter_ceiling": -1.0,
        "saturation": 0.0,
    },
}


class ConfigManager:
    """Load/save presets and engine config for the mastering engine."""

    def __init__(self, config_path: str | Path | None = None, presets_path: str | Path | None = None):
        root = Path(__file__).resolve().parent
        self.config_path = Path(config_path) if config_path else root / "config.json"
        self.presets_path = Path(presets_path) if presets_path else root / "presets.json"

    def load_config(self) -> EngineConfig:
        config = EngineConfig()
        if not self.config_path.exists():
            return config
        overrides = json.loads(self.config_path.read_text(encoding="utf-8"))
        known = {f.name for f in fields(EngineConfig)}
        for key, value in overrides.items():
            if key in known:
                setattr(config, key, value)
            else:
                LOG.warning("Ignoring unknown config key %r in %s", key, self.config_path)
        return config

    def load_presets(self) -> dict[str, dict[str, Any]]:
        merged = {name: dict(values) for name, values in DEFAULT_PRESETS.items()}
        if self.presets_path.exists():
            presets = json.loads(self.presets_path.read_text(encoding="utf-8"))
            merged.update(presets)
        return merged

    def save_presets(self, presets: dict[str, dict[str, Any]]) -> None:
        self.presets_path.parent.mkdir(parents=True, exist_ok=True)
        self.presets_path.write_text(json.dumps(presets, indent=2), encoding="utf-8")

    def list_presets(self) -> list[str]:
        return sorted(self.load_presets().keys())

    def get_preset(self, name: str) -> dict[str, Any]:
        presets = self.load_presets()
        if name not in presets:
            raise ValueError(f"Unknown preset {name!r}; available: {', '.join(sorted(presets))}")
        return dict(presets[name])

    def preset_settings(self, name: str, base: MasteringSettings | None = None) -> MasteringSettings:
        return (base or MasteringSettings()).with_updates(**self.get_preset(name))


@dataclass
class CheckResult:
    ok: bool
    message: str


class StabilityChecks:
    """Synthetic material and sanity checks for rendered output."""

    @staticmethod
    def generate_example(sr: int = 44100, seconds: float = 2.0, seed: int = 0) -> np.ndarray:
        t = np.arange(int(sr * seconds)) / sr
        rng = np.random.default_rng(seed)
        left = 0.5 * np.sin(2.0 * np.pi * 220.0 * t) + 0.2 * np.sin(2.0 * np.pi * 880.0 * t)
        right = 0.5 * np.sin(2.0 * np.pi * 220.0 * t + 0.15) + 0.2 * np.sin(2.0 * np.pi * 880.0 * t)
        noise = 0.02 * rng.standard_normal(t.size)
        return np.stack([left + noise, right + noise], axis=-1).astype(np.float32)

    @staticmethod
    def sine(freq: float, sr: int = 44100, seconds: float = 1.0, amplitude: float = 0.5) -> np.ndarray:
        t = np.arange(int(sr * seconds)) / sr
        return (amplitude * np.sin(2.0 * np.pi * freq * t)).astype(np.float32)

    @staticmethod
    def pulse_train(
        period: int,
        sr: int = 44100,
        seconds: float = 20.0,
        width: int = 1323,
        amplitude: float = 0.9,
    ) -> np.ndarray:
        """Positive rectangular kicks every `period` samples."""
        out = np.zeros(int(sr * seconds), dtype=np.float32)
        for start in range(0, out.size, period):
            out[start : start + width] = amplitude
        return out

    @staticmethod
    def assert_stable(stereo: np.ndarray, peak_limit_dbfs: float = 3.0) -> CheckResult:
        if not np.isfinite(stereo).all():
            return CheckResult(False, "Non-finite samples detected.")
        peak = peak_dbfs(stereo)
        if peak > peak_limit_dbfs:
            return CheckResult(False, f"Peak exceeds {peak_limit_dbfs:.1f} dBFS ({peak:.2f}).")
        return CheckResult(True, "Signal is finite and within expected peak range.")

    @staticmethod
    def summarize_energy(stereo: np.ndarray) -> str:
        left_rms = rms(stereo[:, 0])
        right_rms = rms(stereo[:, 1])
        return f"RMS L={left_rms:.4f} R={right_rms:.4f}"
