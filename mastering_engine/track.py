from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import librosa
import numpy as np
import soundfile as sf

from .errors import DecodeFailure

LOG = logging.getLogger("mastering_engine")


@dataclass(frozen=True)
class Track:
    """Decoded audio owned by a session. `samples` is read-only, shape (frames, 2)."""

    samples: np.ndarray
    sample_rate: int
    source_channels: int = 2
    name: str = "track"

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def channels(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration(self) -> float:
        return self.frames / float(self.sample_rate)

    @property
    def left(self) -> np.ndarray:
        return self.samples[:, 0]

    @property
    def right(self) -> np.ndarray:
        return self.samples[:, 1]

    @classmethod
    def from_array(cls, audio: np.ndarray, sample_rate: int, name: str = "track") -> "Track":
        """Accepts (frames,), (frames, ch) or (ch, frames) with ch in {1, 2}."""
        if sample_rate is None or int(sample_rate) <= 0:
            raise DecodeFailure(f"Invalid sample rate: {sample_rate!r}")
        audio = np.asarray(audio, dtype=np.float32)

        if audio.ndim == 1:
            audio = audio[:, None]
        elif audio.ndim == 2:
            if audio.shape[0] in (1, 2) and audio.shape[1] > 2:
                audio = audio.T
        else:
            raise DecodeFailure(f"Unexpected audio shape: {audio.shape}")

        channels = audio.shape[1]
        if channels not in (1, 2):
            raise DecodeFailure(f"Only mono or stereo input is supported (got {channels} channels).")
        if audio.shape[0] == 0:
            raise DecodeFailure("Decoded audio has no frames.")

        finite = np.isfinite(audio)
        if not finite.all():
            LOG.warning("%s: replacing %d non-finite samples with silence", name, int((~finite).sum()))
            audio = np.where(finite, audio, 0.0).astype(np.float32)

        stereo = np.repeat(audio, 2, axis=1) if channels == 1 else np.array(audio, dtype=np.float32)
        stereo = np.ascontiguousarray(stereo)
        stereo.setflags(write=False)
        return cls(samples=stereo, sample_rate=int(sample_rate), source_channels=channels, name=name)

    @classmethod
    def from_channels(cls, channels: Sequence[np.ndarray], sample_rate: int, name: str = "track") -> "Track":
        if not 1 <= len(channels) <= 2:
            raise DecodeFailure(f"Only mono or stereo input is supported (got {len(channels)} channels).")
        lengths = {len(c) for c in channels}
        if len(lengths) != 1:
            raise DecodeFailure("Channel buffers differ in length.")
        return cls.from_array(np.stack([np.asarray(c) for c in channels], axis=-1), sample_rate, name=name)


def load_track(path: str | Path) -> Track:
    """
    Decode an audio file at its native rate: soundfile first (wav, flac, ogg, aiff),
    librosa as the fallback for everything else (mp3, m4a via audioread).
    """
    path = Path(path)
    if not path.exists():
        raise DecodeFailure(f"File not found: {path}")

    try:
        y, sr = sf.read(str(path), always_2d=True, dtype="float32")
        LOG.debug("Decoded %s with soundfile (%d Hz, %d ch)", path.name, sr, y.shape[1])
        return Track.from_array(y, sr, name=path.stem)
    except DecodeFailure:
        raise
    except Exception as e:
        LOG.debug("SoundFile load failed for %s: %s. Trying librosa.", path, e)

    try:
        y, sr = librosa.load(str(path), sr=None, mono=False)
    except Exception as e:
        raise DecodeFailure(f"Could not decode {path}: {e}") from e
    y = y.T if y.ndim == 2 else y
    LOG.debug("Decoded %s with librosa (%d Hz)", path.name, sr)
    return Track.from_array(y, int(sr), name=path.stem)
