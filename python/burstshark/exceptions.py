"""Exception hierarchy shared by the burst pipeline."""

from __future__ import annotations

from typing import Optional


class BurstSharkError(Exception):
    """Base class for every error raised by burstshark."""


class MalformedRecord(BurstSharkError, ValueError):
    """A single decoder line could not be parsed into a packet record."""

    def __init__(self, message: str, line: str = "") -> None:
        super().__init__(message)
        self.line = line


class DecoderSpawnFailed(BurstSharkError):
    """Raised when the upstream packet decoder cannot be started."""


class DecoderDied(BurstSharkError):
    """Raised when the packet decoder terminated abnormally after starting."""

    def __init__(self, message: str, returncode: Optional[int] = None) -> None:
        super().__init__(message)
        self.returncode = returncode


class SinkWriteFailed(BurstSharkError):
    """Raised when a formatted burst cannot be written to its destination."""


__all__ = [
    "BurstSharkError",
    "MalformedRecord",
    "DecoderSpawnFailed",
    "DecoderDied",
    "SinkWriteFailed",
]
