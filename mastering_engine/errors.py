from __future__ import annotations


class MasteringError(RuntimeError):
    """Base class for failures reported by the mastering engine."""


class DecodeFailure(MasteringError):
    """The input could not be turned into a usable stereo track."""


class AnalysisFailure(MasteringError):
    """Track statistics could not be computed; the load attempt is abandoned."""


class RenderFailure(MasteringError):
    """Offline rendering or WAV serialization failed."""
