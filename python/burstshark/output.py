"""Filtering, numbering and formatting of emitted bursts."""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Optional, Union

from .burst import Burst
from .exceptions import SinkWriteFailed

logger = logging.getLogger(__name__)

BURST_LINE_FORMAT = (
    "{index:5d} {elapsed:13.9f} {src:15} {src_port:6d} {dst:15} {dst_port:5d} "
    "{start:13.9f} {end:13.9f} {delay:13.9f} {packets:4d} {size}"
)


@dataclass(frozen=True)
class BurstFilter:
    """Size and packet-count bounds; a burst outside any set bound is dropped."""

    min_bytes: Optional[int] = None
    max_bytes: Optional[int] = None
    min_packets: Optional[int] = None
    max_packets: Optional[int] = None

    def accepts(self, burst: Burst) -> bool:
        if self.min_bytes is not None and burst.size < self.min_bytes:
            return False
        if self.max_bytes is not None and burst.size > self.max_bytes:
            return False
        if self.min_packets is not None and burst.packets < self.min_packets:
            return False
        if self.max_packets is not None and burst.packets > self.max_packets:
            return False
        return True


def format_burst(index: int, burst: Burst, elapsed: float, delay: float) -> str:
    return BURST_LINE_FORMAT.format(
        index=index,
        elapsed=elapsed,
        src=burst.src,
        src_port=burst.src_port,
        dst=burst.dst,
        dst_port=burst.dst_port,
        start=burst.start,
        end=burst.end,
        delay=delay,
        packets=burst.packets,
        size=burst.size,
    )


class OutputWriter:
    """Single consumer of all emitted bursts.

    Survivors of ``burst_filter`` are numbered from 1 in the order they
    arrive and written to standard output (unless ``suppress``) and to
    ``outfile`` when one is given.
    """

    def __init__(
        self,
        burst_filter: Optional[BurstFilter] = None,
        *,
        outfile: Optional[Union[str, Path]] = None,
        suppress: bool = False,
        stream: Optional[IO[str]] = None,
    ) -> None:
        self.burst_filter = burst_filter or BurstFilter()
        self.outfile = Path(outfile) if outfile is not None else None
        self.suppress = suppress
        self.stream = stream
        self._file: Optional[IO[str]] = None
        self._started: Optional[float] = None
        self.bursts_received = 0
        self.bursts_written = 0
        self.bursts_filtered = 0

    # ------------------------------------------------------------------
    def __enter__(self) -> "OutputWriter":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()

    def open(self) -> None:
        if self._started is None:
            self._started = time.monotonic()
        if self.outfile is None or self._file is not None:
            return
        try:
            self.outfile.parent.mkdir(parents=True, exist_ok=True)
            self._file = self.outfile.open("w", encoding="utf-8")
        except OSError as exc:
            raise SinkWriteFailed(f"Cannot open burst output file {self.outfile}") from exc

    def close(self) -> None:
        if self._file is not None:
            try:
                self._file.close()
            except OSError:
                logger.debug("Failed to close burst output file", exc_info=True)
            finally:
                self._file = None

    # ------------------------------------------------------------------
    def write(self, burst: Burst) -> Optional[str]:
        """Filter, number and write ``burst``; returns the line written, if any."""
        self.bursts_received += 1
        if not self.burst_filter.accepts(burst):
            self.bursts_filtered += 1
            return None

        self.open()
        assert self._started is not None
        self.bursts_written += 1
        elapsed = time.monotonic() - self._started
        delay = time.time() - burst.end
        line = format_burst(self.bursts_written, burst, elapsed, delay)

        if not self.suppress:
            stream = self.stream if self.stream is not None else sys.stdout
            self._emit(stream, line, "standard output")
        if self._file is not None:
            self._emit(self._file, line, str(self.outfile))
        return line

    async def consume(self, bursts: "asyncio.Queue[Optional[Burst]]") -> None:
        """Write bursts from ``bursts`` until the ``None`` sentinel arrives."""
        self.open()
        while True:
            burst = await bursts.get()
            if burst is None:
                return
            self.write(burst)

    @staticmethod
    def _emit(stream: IO[str], line: str, name: str) -> None:
        try:
            stream.write(line + "\n")
            stream.flush()
        except OSError as exc:
            raise SinkWriteFailed(f"Failed writing burst to {name}") from exc


__all__ = ["BURST_LINE_FORMAT", "BurstFilter", "OutputWriter", "format_burst"]
