from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

import numpy as np

from .automation import ParameterAutomation
from .dynamics import Compressor
from .filters import BiquadFilter
from .metering import OutputTap
from .saturation import Waveshaper, make_distortion_curve
from .settings import MasteringSettings
from .width_controller import WidthController

LOG = logging.getLogger("mastering_engine")


@dataclass
class EngineConfig:
    block_size: int = 1024
    smoothing_time_constant: float = 0.05
    curve_resolution: int = 44100
    oversample: int = 4
    oversample_taps: int = 65

    rumble_hz: float = 25.0
    eq_low_hz: float = 100.0
    eq_mid_hz: float = 1000.0
    eq_high_hz: float = 10000.0
    crossover_low_hz: float = 200.0
    crossover_high_hz: float = 5000.0

    low_band_ratio: float = 2.5
    mid_band_ratio: float = 2.0
    high_band_ratio: float = 1.5
    band_attack_ms: float = 3.0
    band_release_ms: float = 250.0
    band_knee_db: float = 6.0

    limiter_ratio: float = 20.0
    limiter_attack_ms: float = 2.0
    limiter_release_ms: float = 250.0
    limiter_knee_db: float = 0.0

    tap_size: int = 2048
    meter_interval: float = 0.05
    meter_rms_alpha: float = 0.3
    meter_peak_decay: float = 0.1
    meter_floor_db: float = -100.0


class GraphContext(enum.Enum):
    LIVE = "live"
    OFFLINE = "offline"


class MultibandDynamics:
    """Three parallel filtered copies, each compressed on its own, summed back together.

    The low/mid/high filters are plain biquads rather than a matched crossover,
    so the sum only approximates the input spectrum.
    """

    def __init__(self, sr: int, config: EngineConfig):
        lo = config.crossover_low_hz
        hi = config.crossover_high_hz
        self.low_filters = [BiquadFilter("lowpass", sr, lo)]
        self.mid_filters = [BiquadFilter("highpass", sr, lo), BiquadFilter("lowpass", sr, hi)]
        self.high_filters = [BiquadFilter("highpass", sr, hi)]

        def band_comp(ratio: float) -> Compressor:
            return Compressor(
                sr,
                ratio=ratio,
                attack_ms=config.band_attack_ms,
                release_ms=config.band_release_ms,
                knee_db=config.band_knee_db,
            )

        self.low_comp = band_comp(config.low_band_ratio)
        self.mid_comp = band_comp(config.mid_band_ratio)
        self.high_comp = band_comp(config.high_band_ratio)

    @staticmethod
    def _filter(block: np.ndarray, chain: list[BiquadFilter]) -> np.ndarray:
        for stage in chain:
            block = stage.process(block)
        return block

    def split(self, block: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        return (
            self._filter(block, self.low_filters),
            self._filter(block, self.mid_filters),
            self._filter(block, self.high_filters),
        )

    def process(
        self,
        block: np.ndarray,
        low_threshold: np.ndarray,
        mid_threshold: np.ndarray,
        high_threshold: np.ndarray,
    ) -> np.ndarray:
        low, mid, high = self.split(block)
        low = self.low_comp.process(low, low_threshold)
        mid = self.mid_comp.process(mid, mid_threshold)
        high = self.high_comp.process(high, high_threshold)
        return low + mid + high


class MasteringGraph:
    """The fixed mastering chain bound to one settings snapshot and one execution context.

    gain -> rumble HPF -> saturation -> 3-band EQ -> M/S width -> multiband
    dynamics -> limiter -> output tap.

    A LIVE graph accepts retargeting through its automation layer; an OFFLINE
    graph keeps the snapshot it was built with.
    """

    def __init__(
        self,
        settings: MasteringSettings,
        sr: int,
        context: GraphContext = GraphContext.OFFLINE,
        config: EngineConfig | None = None,
        smoothing: bool = True,
    ):
        self.config = config or EngineConfig()
        self.context = context
        self.sr = int(sr)
        cfg = self.config
        live = context is GraphContext.LIVE

        self.automation = ParameterAutomation(
            settings,
            self.sr,
            time_constant=cfg.smoothing_time_constant,
            smoothing=smoothing and live,
            frozen=not live,
            curve_resolution=cfg.curve_resolution,
        )
        snapshot = self.automation.settings

        self.rumble = BiquadFilter("highpass", self.sr, cfg.rumble_hz)
        self.saturation = Waveshaper(
            make_distortion_curve(snapshot.saturation, cfg.curve_resolution),
            oversample=cfg.oversample,
            taps=cfg.oversample_taps,
        )
        self.low_shelf = BiquadFilter("lowshelf", self.sr, cfg.eq_low_hz, snapshot.eq_low)
        self.mid_peak = BiquadFilter("peaking", self.sr, cfg.eq_mid_hz, snapshot.eq_mid)
        self.high_shelf = BiquadFilter("highshelf", self.sr, cfg.eq_high_hz, snapshot.eq_high)
        self.width = WidthController()
        self.multiband = MultibandDynamics(self.sr, cfg)
        self.limiter = Compressor(
            self.sr,
            ratio=cfg.limiter_ratio,
            attack_ms=cfg.limiter_attack_ms,
            release_ms=cfg.limiter_release_ms,
            knee_db=cfg.limiter_knee_db,
        )
        self.tap = OutputTap(cfg.tap_size)
        self.frames_processed = 0
        LOG.debug("Built %s graph @ %d Hz: %s", context.value, self.sr, snapshot)

    @property
    def settings(self) -> MasteringSettings:
        return self.automation.settings

    def retarget(self, settings: MasteringSettings) -> None:
        """Control-side entry point; only enqueues, never touches the nodes."""
        self.automation.post(settings)

    def process_block(self, block: np.ndarray) -> np.ndarray:
        x = np.asarray(block, dtype=np.float64)
        n = x.shape[0]
        if n == 0:
            return x.reshape(0, 2)

        if self.context is GraphContext.LIVE:
            curve = self.automation.drain()
            if curve is not None:
                self.saturation.set_curve(curve)
        p = self.automation.next_block(n)

        x = x * p["input_gain"][:, None]
        x = self.rumble.process(x)
        x = self.saturation.process(x)

        # EQ gains update once per block.
        self.low_shelf.set_gain(p["eq_low"][-1])
        self.mid_peak.set_gain(p["eq_mid"][-1])
        self.high_shelf.set_gain(p["eq_high"][-1])
        x = self.low_shelf.process(x)
        x = self.mid_peak.process(x)
        x = self.high_shelf.process(x)

        x = self.width.process(x, p["width"])
        x = self.multiband.process(x, p["mb_low_threshold"], p["mb_mid_threshold"], p["mb_high_threshold"])
        x = self.limiter.process(x, p["limiter_ceiling"])

        self.tap.push(x)
        self.frames_processed += n
        return x

    def render(self, audio: np.ndarray, block_size: int | None = None) -> np.ndarray:
        """Run the whole buffer through the chain in fixed-size blocks."""
        block_size = int(block_size or self.config.block_size)
        audio = np.asarray(audio)
        out = np.empty((audio.shape[0], 2), dtype=np.float64)
        for start in range(0, audio.shape[0], block_size):
            stop = min(start + block_size, audio.shape[0])
            out[start:stop] = self.process_block(audio[start:stop])
        return out


def build_graph(
    settings: MasteringSettings,
    sr: int,
    context: GraphContext,
    config: EngineConfig | None = None,
    smoothing: bool = True,
) -> MasteringGraph:
    return MasteringGraph(settings, sr, context=context, config=config, smoothing=smoothing)
