from __future__ import annotations

import json
import logging
import math
import time
from pathlib import Path
from typing import Any

import librosa
import numpy as np
import pyloudnorm as pyln
from scipy.signal import resample_poly

from .analyzer import TrackAnalysis
from .dsp_utils import ensure_stereo
from .settings import MasteringSettings

LOG = logging.getLogger("mastering_engine")

# pyloudnorm gates on 400 ms blocks; shorter renders have no integrated loudness.
LOUDNESS_BLOCK_SECONDS = 0.4


def _to_db(x: float) -> float:
    return float(20.0 * np.log10(x + 1e-9))


def _true_peak(stereo: np.ndarray, oversample: int = 4) -> float:
    peak = float(np.max(np.abs(stereo)) + 1e-9)
    if oversample <= 1:
        return peak
    os = resample_poly(stereo, oversample, 1, axis=0)
    return max(peak, float(np.max(np.abs(os)) + 1e-9))


def _finite_or_none(x: float) -> float | None:
    return float(x) if math.isfinite(x) else None


class RenderMetricsLogger:
    """Appends one JSON entry of loudness/peak/stereo metrics per exported render."""

    def __init__(self, log_path: str | Path = "mastering_log.json"):
        self.log_path = Path(log_path)
        self.logs = self._load()

    def _load(self) -> list[dict]:
        if self.log_path.exists():
            try:
                return json.loads(self.log_path.read_text(encoding="utf-8"))
            except json.JSONDecodeError:
                LOG.warning("Metrics log %s is not valid JSON; starting a new one", self.log_path)
                return []
        return []

    def _write(self) -> None:
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self.log_path.write_text(json.dumps(self.logs, indent=2), encoding="utf-8")

    def integrated_loudness(self, mono: np.ndarray, sr: int) -> float | None:
        if mono.size < int(LOUDNESS_BLOCK_SECONDS * sr):
            return None
        meter = pyln.Meter(sr)
        return _finite_or_none(meter.integrated_loudness(mono))

    def measure(self, audio: np.ndarray, sr: int) -> dict[str, Any]:
        stereo = ensure_stereo(np.asarray(audio, dtype=np.float64))
        mono = np.mean(stereo, axis=1)
        peak = float(np.max(np.abs(stereo))) if stereo.size else 0.0
        rms = float(np.sqrt(np.mean(mono**2))) if mono.size else 0.0
        left, right = stereo[:, 0], stereo[:, 1]
        denom = float(np.linalg.norm(left) * np.linalg.norm(right))
        centroid = float(librosa.feature.spectral_centroid(y=mono, sr=sr).mean()) if mono.size else 0.0
        return {
            "peak_dbfs": _to_db(peak),
            "true_peak_dbfs": _to_db(_true_peak(stereo)),
            "integrated_lufs": self.integrated_loudness(mono, sr),
            "rms_db": _to_db(rms),
            "crest_factor_db": _to_db(peak) - _to_db(rms),
            "stereo_correlation": float(np.dot(left, right) / denom) if denom > 0.0 else 0.0,
            "spectral_centroid_hz": centroid,
        }

    def analyze(
        self,
        audio: np.ndarray,
        sr: int,
        name: str = "render",
        analysis: TrackAnalysis | None = None,
        settings: MasteringSettings | None = None,
    ) -> dict[str, Any]:
        metrics = self.measure(audio, sr)
        if analysis is not None:
            metrics["tempo_bpm"] = analysis.bpm
            metrics["key_estimate"] = analysis.key
            metrics["source_score"] = analysis.score
        entry = {
            "timestamp": time.strftime("%Y-%m-%d %H:%M:%S"),
            "render_name": name,
            "metrics": metrics,
            "settings": settings.to_dict() if settings is not None else None,
        }
        self.logs.append(entry)
        self._write()
        LOG.info("Logged render metrics for %s to %s", name, self.log_path)
        return entry
