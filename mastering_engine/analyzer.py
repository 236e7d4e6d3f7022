from __future__ import annotations

import logging
import math
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import numpy as np

from .dsp_utils import level_db, to_mono
from .errors import AnalysisFailure
from .filters import apply_biquad
from .music_theory import fold_bpm, note_name_for_freq
from .settings import MasteringSettings
from .track import Track

LOG = logging.getLogger("mastering_engine")

STATS_WINDOW_SECONDS = 15.0
STATS_FLOOR_DB = -120.0
SUB_THRESHOLD = 0.1
SUB_DECIMATION = 10
# Not measured; kept as a fixed reference so score inputs stay stable.
MID_ENERGY_REFERENCE = 0.5

DEFAULT_BPM = 128
TEMPO_WINDOW_SECONDS = 30.0
TEMPO_LOWPASS_HZ = 150.0
TEMPO_STRIDE = 1000
TEMPO_THRESHOLD = 0.4
TEMPO_DEBOUNCE = 2000
TEMPO_BUCKET = 100

UNKNOWN_KEY = "Unknown"
KEY_WINDOW_SECONDS = 2.0
KEY_LOWPASS_HZ = 1000.0
KEY_MAX_HZ = 1000
KEY_MIN_HZ = 40
KEY_STRIDE = 20


@dataclass(frozen=True)
class AudioStats:
    rms: float = STATS_FLOOR_DB
    peak: float = STATS_FLOOR_DB
    crest_factor: float = 0.0
    duration: float = 0.0
    sample_rate: int = 44100
    channels: int = 2
    low_energy: float = 0.0
    mid_energy: float = MID_ENERGY_REFERENCE
    high_energy: float = 0.0
    sub_bass_energy: float = 0.0
    stereo_correlation: float = 0.0


@dataclass(frozen=True)
class TrackAnalysis:
    stats: AudioStats
    score: int
    bpm: int = DEFAULT_BPM
    key: str = UNKNOWN_KEY


def _centered_window(frames: int, size: int) -> slice:
    start = max(0, frames // 2 - size // 2)
    return slice(start, min(frames, start + size))


def compute_stats(track: Track) -> AudioStats:
    """Level, crest, tilt, sub density and correlation over a window centered on the midpoint."""
    sr = track.sample_rate
    size = int(math.floor(min(track.duration, STATS_WINDOW_SECONDS) * sr))
    seg = np.asarray(track.samples[_centered_window(track.frames, size)], dtype=np.float64)
    left = seg[:, 0]
    right = seg[:, 1]
    mid = to_mono(seg)

    peak = float(np.max(np.abs(mid))) if mid.size else 0.0
    rms = float(np.sqrt(np.sum(mid * mid) / max(1, size)))
    rms_db = level_db(rms, STATS_FLOOR_DB)
    peak_db = level_db(peak, STATS_FLOOR_DB)

    denom = float(np.linalg.norm(left) * np.linalg.norm(right))
    correlation = float(np.dot(left, right) / denom) if denom > 0.0 else 0.0
    correlation = max(-1.0, min(1.0, correlation))

    # First difference ~ high band, two-sample average ~ low band.
    prev = mid[:-1]
    cur = mid[1:]
    high_sum = float(np.sum(np.square(cur - prev)))
    low_sum = float(np.sum(np.square(0.5 * (cur + prev))))
    total = low_sum + high_sum

    sub_hits = int(np.count_nonzero(np.abs(mid[SUB_DECIMATION::SUB_DECIMATION]) > SUB_THRESHOLD))
    sub_density = sub_hits / (max(1, size) / SUB_DECIMATION)

    return AudioStats(
        rms=rms_db,
        peak=peak_db,
        crest_factor=peak_db - rms_db,
        duration=track.duration,
        sample_rate=sr,
        channels=track.source_channels,
        low_energy=low_sum / total if total > 0.0 else 0.0,
        mid_energy=MID_ENERGY_REFERENCE,
        high_energy=high_sum / total if total > 0.0 else 0.0,
        sub_bass_energy=sub_density,
        stereo_correlation=correlation,
    )


def compute_score(stats: AudioStats) -> int:
    score = 100
    if stats.peak > -0.1:
        score -= 30  # clipping risk
    if stats.crest_factor < 4:
        score -= 20  # over-compressed
    if stats.crest_factor > 15:
        score -= 15  # under-compressed
    if stats.stereo_correlation < 0:
        score -= 40  # phase cancellation
    if stats.stereo_correlation > 0.95:
        score -= 10  # too mono
    return int(max(0, min(100, score)))


def _js_round(x: float) -> int:
    return int(math.floor(x + 0.5))


def _tempo_peaks(data: np.ndarray) -> list[int]:
    peaks: list[int] = []
    for i in range(0, data.size, TEMPO_STRIDE):
        if data[i] > TEMPO_THRESHOLD and (not peaks or i - peaks[-1] > TEMPO_DEBOUNCE):
            peaks.append(i)
    return peaks


def _modal_interval(peaks: list[int]) -> int:
    counts = Counter(_js_round(d / TEMPO_BUCKET) * TEMPO_BUCKET for d in np.diff(peaks).tolist())
    best_interval = 0
    best_count = 0
    # Ascending order so ties go to the shortest interval.
    for interval in sorted(counts):
        if counts[interval] > best_count:
            best_count = counts[interval]
            best_interval = interval
    return best_interval


def detect_tempo(track: Track) -> int:
    """Kick-driven BPM estimate folded into the 110-155 range; 128 when nothing usable is found."""
    try:
        sr = track.sample_rate
        size = int(min(track.frames, TEMPO_WINDOW_SECONDS * sr))
        data = np.asarray(track.samples[_centered_window(track.frames, size), 0], dtype=np.float64)
        if data.size == 0:
            return DEFAULT_BPM
        data = apply_biquad(data, sr, "lowpass", TEMPO_LOWPASS_HZ)
        interval = _modal_interval(_tempo_peaks(data))
        if interval <= 0:
            LOG.debug("No reliable beat pattern in %s, using %d BPM", track.name, DEFAULT_BPM)
            return DEFAULT_BPM
        return _js_round(fold_bpm(60.0 * sr / interval))
    except Exception as e:
        LOG.warning("Tempo detection failed for %s: %s", track.name, e)
        return DEFAULT_BPM


def detect_key(track: Track) -> str:
    """Dominant pitch class of the opening seconds via strided autocorrelation."""
    try:
        sr = track.sample_rate
        n = int(min(track.frames, KEY_WINDOW_SECONDS * sr))
        mono = to_mono(np.asarray(track.samples[:n], dtype=np.float64))
        data = apply_biquad(mono, sr, "lowpass", KEY_LOWPASS_HZ)

        best_lag = -1
        max_corr = 0.0
        for lag in range(sr // KEY_MAX_HZ, sr // KEY_MIN_HZ):
            if lag <= 0 or lag >= n:
                continue
            corr = float(np.dot(data[0 : n - lag : KEY_STRIDE], data[lag:n:KEY_STRIDE]))
            if corr > max_corr:
                max_corr = corr
                best_lag = lag
        if best_lag == -1:
            return UNKNOWN_KEY
        return note_name_for_freq(sr / best_lag)
    except Exception as e:
        LOG.warning("Key detection failed for %s: %s", track.name, e)
        return UNKNOWN_KEY


def suggest_settings(stats: AudioStats, base: MasteringSettings | None = None) -> MasteringSettings:
    """Auto gain staging plus band thresholds placed around the measured RMS."""
    base = base or MasteringSettings()
    changes: dict[str, float] = {}
    if stats.peak < -6.0:
        changes["input_gain"] = min(6.0, -3.0 - stats.peak)
    elif stats.peak > -0.5:
        changes["input_gain"] = -1.0
    changes["mb_low_threshold"] = math.floor(stats.rms - 2.0)
    changes["mb_mid_threshold"] = math.floor(stats.rms)
    changes["mb_high_threshold"] = math.floor(stats.rms + 1.0)
    return base.with_updates(**changes)


class Analyzer:
    """Runs the per-track analysis pass: stats and score inline, tempo and key on workers."""

    def __init__(self, max_workers: int = 2):
        self.max_workers = max(1, int(max_workers))

    def analyze(self, track: Track) -> TrackAnalysis:
        try:
            stats = compute_stats(track)
        except Exception as e:
            raise AnalysisFailure(f"Could not compute statistics for {track.name}: {e}") from e
        score = compute_score(stats)
        LOG.info("[STATS] %s RMS: %.2f dB | Peak: %.2f dB | Score: %d", track.name, stats.rms, stats.peak, score)

        with ThreadPoolExecutor(max_workers=self.max_workers) as ex:
            bpm_future = ex.submit(detect_tempo, track)
            key_future = ex.submit(detect_key, track)
            bpm = bpm_future.result()
            key = key_future.result()
        LOG.info("[RESULT] %s Tempo: %d BPM | Key: %s", track.name, bpm, key)
        return TrackAnalysis(stats=stats, score=score, bpm=bpm, key=key)
