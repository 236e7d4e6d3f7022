from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import numpy as np

from .analyzer import Analyzer, TrackAnalysis, suggest_settings
from .audio_engine import EngineConfig, GraphContext, MasteringGraph, build_graph
from .errors import AnalysisFailure, DecodeFailure
from .export import ExportResult, export_track
from .metering import LiveMeter, MeterReading, OutputTap
from .settings import CAMEL_CASE_ALIASES, MasteringSettings
from .system_utils import DEFAULT_PRESETS
from .track import Track, load_track

LOG = logging.getLogger("mastering_engine")

BARS_PER_JUMP = 8
BEATS_PER_BAR = 4


@dataclass(frozen=True)
class TransportState:
    is_playing: bool = False
    position: float = 0.0
    bypass: bool = False


class LivePlayback:
    """One live output stream: the track from a start frame, through a LIVE graph or raw when bypassed.

    A handle is never reused. Closing it makes every later render return silence.
    """

    def __init__(self, track: Track, start_frame: int, graph: MasteringGraph | None, tap_size: int = 2048):
        self.track = track
        self.graph = graph
        self.position_frame = int(max(0, min(track.frames, start_frame)))
        self._tap = graph.tap if graph is not None else OutputTap(tap_size)
        self._closed = False

    @property
    def bypass(self) -> bool:
        return self.graph is None

    @property
    def tap(self) -> OutputTap:
        return self._tap

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def finished(self) -> bool:
        return self.position_frame >= self.track.frames

    @property
    def position(self) -> float:
        return self.position_frame / float(self.track.sample_rate)

    def render(self, frames: int) -> np.ndarray:
        out = np.zeros((frames, 2), dtype=np.float64)
        if self._closed or frames <= 0:
            return out
        start = self.position_frame
        stop = min(self.track.frames, start + frames)
        n = stop - start
        if n > 0:
            block = np.asarray(self.track.samples[start:stop], dtype=np.float64)
            if self.graph is not None:
                block = self.graph.process_block(block)
            else:
                self._tap.push(block)
            out[:n] = block
        self.position_frame = stop
        return out

    def close(self) -> None:
        self._closed = True


class MasteringSession:
    """
    Owns the loaded track, its analysis, the current settings, the transport
    and at most one live playback handle.

    Control-side calls (load, settings, transport, export) are serialized by a
    lock. `render_live_block` is the audio-side entry point and never takes it.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        analyzer: Analyzer | None = None,
        presets: dict[str, dict[str, Any]] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or EngineConfig()
        self.analyzer = analyzer or Analyzer()
        self.presets = dict(presets) if presets is not None else dict(DEFAULT_PRESETS)
        self.meter = LiveMeter(
            interval=self.config.meter_interval,
            rms_alpha=self.config.meter_rms_alpha,
            peak_decay=self.config.meter_peak_decay,
            floor_db=self.config.meter_floor_db,
            clock=clock,
        )
        self._lock = threading.RLock()
        self._export_pool: ThreadPoolExecutor | None = None
        self._generation = 0
        self._track: Track | None = None
        self._analysis: TrackAnalysis | None = None
        self._settings = MasteringSettings()
        self._handle: LivePlayback | None = None
        self._position = 0.0
        self._bypass = False

    # ------------------------------------------------------------------ track

    @property
    def track(self) -> Track | None:
        return self._track

    @property
    def analysis(self) -> TrackAnalysis | None:
        return self._analysis

    def load_file(self, path: str | Path) -> TrackAnalysis | None:
        generation = self._next_generation()
        try:
            track = load_track(path)
        except DecodeFailure:
            self._go_idle(generation)
            raise
        return self._install(track, generation)

    def load_track(self, track: Track) -> TrackAnalysis | None:
        return self._install(track, self._next_generation())

    def _next_generation(self) -> int:
        with self._lock:
            self._generation += 1
            self._stop_locked()
            return self._generation

    def _install(self, track: Track, generation: int) -> TrackAnalysis | None:
        LOG.info("Loading %s (%.2f s @ %d Hz)", track.name, track.duration, track.sample_rate)
        try:
            analysis = self.analyzer.analyze(track)
        except AnalysisFailure:
            self._go_idle(generation)
            raise

        with self._lock:
            if generation != self._generation:
                LOG.info("Discarding analysis of %s: superseded by a newer load", track.name)
                return None
            self._track = track
            self._analysis = analysis
            self._settings = suggest_settings(analysis.stats, self._settings)
            self._position = 0.0
            self.meter.reset()
        LOG.info("Seeded settings for %s: %s", track.name, self._settings)
        return analysis

    def _go_idle(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._stop_locked()
            self._track = None
            self._analysis = None
            self._position = 0.0
            self.meter.reset()

    # --------------------------------------------------------------- settings

    @property
    def settings(self) -> MasteringSettings:
        return self._settings

    def get_setting(self, name: str) -> float:
        name = CAMEL_CASE_ALIASES.get(name, name)
        if not hasattr(self._settings, name):
            raise ValueError(f"Unknown mastering setting: {name!r}")
        return float(getattr(self._settings, name))

    def set_setting(self, name: str, value: float) -> MasteringSettings:
        return self.update_settings(**{name: value})

    def update_settings(self, **changes: float) -> MasteringSettings:
        with self._lock:
            self._settings = self._settings.with_updates(**changes)
            handle = self._handle
            if handle is not None and handle.graph is not None:
                handle.graph.retarget(self._settings)
            return self._settings

    def apply_preset(self, name: str) -> MasteringSettings:
        if name not in self.presets:
            raise ValueError(f"Unknown preset {name!r}; available: {', '.join(sorted(self.presets))}")
        LOG.info("Applying preset %s", name)
        return self.update_settings(**self.presets[name])

    # -------------------------------------------------------------- transport

    @property
    def transport(self) -> TransportState:
        with self._lock:
            self._reap_finished_locked()
            return TransportState(is_playing=self._handle is not None, position=self.position, bypass=self._bypass)

    @property
    def live(self) -> LivePlayback | None:
        with self._lock:
            self._reap_finished_locked()
            return self._handle

    @property
    def is_playing(self) -> bool:
        with self._lock:
            self._reap_finished_locked()
            return self._handle is not None

    @property
    def position(self) -> float:
        handle = self._handle
        return handle.position if handle is not None else self._position

    def play(self, offset: float | None = None) -> None:
        with self._lock:
            if self._track is None:
                raise RuntimeError("No track loaded.")
            self._reap_finished_locked()
            start = self.position if offset is None else float(offset)
            if start >= self._track.duration:
                start = 0.0
            self._start_locked(max(0.0, start))

    def stop(self) -> None:
        with self._lock:
            self._stop_locked()

    def seek(self, seconds: float) -> float:
        with self._lock:
            duration = self._track.duration if self._track is not None else 0.0
            target = max(0.0, min(duration, float(seconds)))
            self._reap_finished_locked()
            if self._handle is not None:
                self._start_locked(target)
            else:
                self._position = target
            return target

    def jump_bars(self, direction: int, bars: int = BARS_PER_JUMP) -> float:
        """Move the playhead by whole phrases at the detected tempo."""
        bpm = self._analysis.bpm if self._analysis is not None else 0
        if not bpm:
            return self.position
        step = (60.0 / bpm) * BEATS_PER_BAR * bars
        return self.seek(self.position + step * direction)

    def set_bypass(self, bypass: bool) -> None:
        with self._lock:
            bypass = bool(bypass)
            if bypass == self._bypass:
                return
            self._bypass = bypass
            self._reap_finished_locked()
            if self._handle is not None:
                self._start_locked(self._handle.position)

    def _start_locked(self, seconds: float) -> None:
        track = self._track
        old = self._handle
        self._handle = None
        if old is not None:
            old.close()

        graph = None
        if not self._bypass:
            graph = build_graph(self._settings, track.sample_rate, GraphContext.LIVE, config=self.config)
        start_frame = int(round(seconds * track.sample_rate))
        self._handle = LivePlayback(track, start_frame, graph, tap_size=self.config.tap_size)
        self._position = seconds
        LOG.debug("Live %s handle started at %.3f s", "bypass" if graph is None else "graph", seconds)

    def _stop_locked(self) -> None:
        handle = self._handle
        self._handle = None
        if handle is not None:
            self._position = handle.position
            handle.close()
        self.meter.reset()

    def _reap_finished_locked(self) -> None:
        # End of track is a stop: the playhead stays at the end and the meter drops to the floor.
        handle = self._handle
        if handle is not None and handle.finished:
            LOG.debug("Live handle reached the end of %s", handle.track.name)
            self._stop_locked()

    # ------------------------------------------------------------- audio side

    def render_live_block(self, frames: int) -> np.ndarray:
        """
        Next `frames` of live output; silence when stopped.

        Reads the current handle without locking and never replaces it. A handle that
        runs off the end keeps returning silence until the control side reaps it.
        """
        handle = self._handle
        if handle is None:
            return np.zeros((frames, 2), dtype=np.float64)
        return handle.render(frames)

    def poll_meter(self, now: float | None = None) -> MeterReading:
        with self._lock:
            self._reap_finished_locked()
            handle = self._handle
        if handle is None:
            return self.meter.reading
        return self.meter.update(handle.tap.snapshot(), now)

    # ----------------------------------------------------------------- export

    def export(self, path: str | Path | None = None) -> ExportResult:
        with self._lock:
            track = self._track
            settings = self._settings
        if track is None:
            raise RuntimeError("No track loaded.")
        return export_track(track, settings, path=path, config=self.config)

    def export_async(self, path: str | Path | None = None) -> Future:
        with self._lock:
            if self._export_pool is None:
                self._export_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="export")
            pool = self._export_pool
        return pool.submit(self.export, path)

    def close(self) -> None:
        with self._lock:
            self._stop_locked()
            pool = self._export_pool
            self._export_pool = None
        if pool is not None:
            pool.shutdown(wait=True)
