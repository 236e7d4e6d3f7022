from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from .audio_engine import EngineConfig, GraphContext, build_graph
from .errors import RenderFailure
from .settings import MasteringSettings
from .track import Track

LOG = logging.getLogger("mastering_engine")

WAV_HEADER_SIZE = 44
PCM_FORMAT = 1
BITS_PER_SAMPLE = 16


@dataclass(frozen=True)
class ExportResult:
    data: bytes
    samples: np.ndarray
    sample_rate: int
    path: Path | None = None

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])


def render_offline(track: Track, settings: MasteringSettings, config: EngineConfig | None = None) -> np.ndarray:
    """
    Run a fresh OFFLINE graph over the whole track from frame 0.

    Returns float32 shaped (frames, source_channels); mono sources are folded back to one channel.
    """
    graph = build_graph(settings, track.sample_rate, GraphContext.OFFLINE, config=config)
    rendered = graph.render(track.samples)
    if track.source_channels == 1:
        rendered = rendered.mean(axis=1, keepdims=True)
    return rendered.astype(np.float32)


def quantize_pcm16(samples: np.ndarray) -> np.ndarray:
    """Clip to [-1, 1]; negatives scale by 32768, positives by 32767, truncated toward zero."""
    x = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(x < 0.0, x * 32768.0, x * 32767.0)
    return np.trunc(scaled).astype("<i2")


def wav_header(frames: int, channels: int, sample_rate: int) -> bytes:
    block_align = channels * BITS_PER_SAMPLE // 8
    data_size = frames * block_align
    return struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + data_size,
        b"WAVE",
        b"fmt ",
        16,
        PCM_FORMAT,
        channels,
        sample_rate,
        sample_rate * block_align,
        block_align,
        BITS_PER_SAMPLE,
        b"data",
        data_size,
    )


def encode_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    samples = np.asarray(samples)
    if samples.ndim == 1:
        samples = samples[:, None]
    frames, channels = samples.shape
    # Row-major (frames, channels) is already channel-interleaved.
    pcm = quantize_pcm16(samples)
    return wav_header(frames, channels, int(sample_rate)) + pcm.tobytes()


def write_wav(path: str | Path, samples: np.ndarray, sample_rate: int) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(encode_wav(samples, sample_rate))
    return path


def export_track(
    track: Track,
    settings: MasteringSettings,
    path: str | Path | None = None,
    config: EngineConfig | None = None,
) -> ExportResult:
    try:
        samples = render_offline(track, settings, config=config)
        data = encode_wav(samples, track.sample_rate)
        out_path = None
        if path is not None:
            out_path = Path(path)
            out_path.parent.mkdir(parents=True, exist_ok=True)
            out_path.write_bytes(data)
    except Exception as e:
        raise RenderFailure(f"Export of {track.name} failed: {e}") from e
    LOG.info("Exported %s (%d frames, %d bytes)%s", track.name, samples.shape[0], len(data), f" -> {out_path}" if out_path else "")
    return ExportResult(data=data, samples=samples, sample_rate=track.sample_rate, path=out_path)
