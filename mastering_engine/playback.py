from __future__ import annotations

import logging

import numpy as np

from .session import MasteringSession

_sounddevice_import_error: Exception | None = None
try:
    import sounddevice as sd  # type: ignore
except Exception as e:
    sd = None
    _sounddevice_import_error = e

LOG = logging.getLogger("mastering_engine")


class DeviceOutput:
    """Speaker output that pulls live blocks from a session inside the device callback."""

    def __init__(self, session: MasteringSession, blocksize: int = 0, device: int | str | None = None):
        if sd is None:
            raise RuntimeError(f"Speaker playback needs the 'sounddevice' package: {_sounddevice_import_error}")
        if session.track is None:
            raise RuntimeError("No track loaded.")
        self.session = session
        self.sample_rate = session.track.sample_rate
        self.blocksize = int(blocksize)
        self.device = device
        self._stream: sd.OutputStream | None = None
        self.underflows = 0

    @property
    def active(self) -> bool:
        return self._stream is not None and self._stream.active

    def _callback(self, outdata, frames, time_info, status) -> None:
        if status.output_underflow:
            self.underflows += 1
        block = self.session.render_live_block(frames)
        outdata[:] = np.clip(block, -1.0, 1.0).astype(np.float32)

    def start(self) -> None:
        if self._stream is not None:
            return
        self._stream = sd.OutputStream(
            samplerate=self.sample_rate,
            channels=2,
            dtype="float32",
            blocksize=self.blocksize,
            device=self.device,
            callback=self._callback,
        )
        self._stream.start()
        LOG.info("Audio output started @ %d Hz", self.sample_rate)

    def close(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is not None:
            stream.stop()
            stream.close()
            LOG.info("Audio output closed (%d underflows)", self.underflows)

    def __enter__(self) -> "DeviceOutput":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.close()
