"""tshark invocation and normalisation of its field output."""

from __future__ import annotations

import asyncio
import logging
import shutil
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, List, Optional, Sequence, Tuple, Union

from .config import CaptureMode, TimeFormat
from .exceptions import DecoderDied, DecoderSpawnFailed

logger = logging.getLogger(__name__)

# Field lists requested from tshark per capture mode. Rows come back
# tab-separated with empty columns preserved.
IP_FIELDS: Tuple[str, ...] = (
    "ip.src",
    "ip.dst",
    "data.len",
    "udp.length",
    "tcp.len",
    "udp.srcport",
    "tcp.srcport",
    "udp.dstport",
    "tcp.dstport",
)
WLAN_FIELDS: Tuple[str, ...] = (
    "wlan.sa",
    "wlan.da",
    "data.len",
    "wlan.seq",
)
TIME_FIELDS = {
    TimeFormat.RELATIVE: "frame.time_relative",
    TimeFormat.EPOCH: "frame.time_epoch",
}

# Placeholder for a value tshark did not report; the record parser rejects it.
MISSING = "-"


@dataclass
class DecoderSettings:
    mode: CaptureMode = CaptureMode.IP
    interface: Optional[str] = None
    infile: Optional[Union[str, Path]] = None
    capture_filter: Optional[str] = None
    display_filter: Optional[str] = None
    capture_outfile: Optional[Union[str, Path]] = None
    time_format: TimeFormat = TimeFormat.RELATIVE
    port_aggregation: bool = False
    tshark_bin: str = "tshark"

    @property
    def offline(self) -> bool:
        return self.infile is not None

    @property
    def fields(self) -> Tuple[str, ...]:
        return WLAN_FIELDS if self.mode is CaptureMode.WLAN else IP_FIELDS


def default_filter(mode: CaptureMode, offline: bool) -> str:
    """Filter admitting the data packets bursts are built from.

    Live captures use capture (BPF) syntax, file reads use display filter
    syntax.
    """
    if mode is CaptureMode.WLAN:
        if offline:
            return "wlan and wlan.fc.type_subtype == 40"
        return "wlan type data subtype qos-data"
    if offline:
        return "udp or (tcp and tcp.len > 0)"
    return "udp or (tcp and (((ip[2:2] - ((ip[0]&0xf)<<2)) - ((tcp[12]&0xf0)>>2)) != 0))"


def build_tshark_args(settings: DecoderSettings) -> List[str]:
    default = default_filter(settings.mode, settings.offline)
    supplied = settings.capture_filter or settings.display_filter
    capture_filter = f"({default}) and ({supplied})" if supplied else default

    if settings.infile is not None:
        args = ["-r", str(settings.infile), "-Y", capture_filter]
    else:
        args = ["-n", "-f", capture_filter]

    if settings.interface:
        args.extend(["-i", settings.interface])

    if settings.capture_outfile is not None:
        args.extend(["-w", str(settings.capture_outfile), "-P"])

    args.extend(
        [
            "-Q",
            "-l",
            "-T",
            "fields",
            "-E",
            "separator=/t",
            "-E",
            "occurrence=f",
            "-e",
            TIME_FIELDS[settings.time_format],
        ]
    )
    for field in settings.fields:
        args.extend(["-e", field])
    return args


def normalize_fields(
    raw: str,
    mode: CaptureMode,
    port_aggregation: bool = False,
) -> str:
    """Turn one raw tshark row into a canonical record line.

    The payload length is the first non-empty of ``data.len``, ``udp.length``
    and ``tcp.len``; ports come from whichever of UDP or TCP reported them.
    """
    fields = WLAN_FIELDS if mode is CaptureMode.WLAN else IP_FIELDS
    columns = raw.rstrip("\r\n").split("\t")
    columns.extend([""] * (len(fields) + 1 - len(columns)))
    columns = [column.strip() for column in columns]

    if mode is CaptureMode.WLAN:
        time, src, dst, length, seq = columns[:5]
        values = [time, src, dst, length, seq]
    else:
        time, src, dst = columns[:3]
        values = [time, src, dst, _first(columns[3:6])]
        if not port_aggregation:
            values.extend([_first(columns[6:8]), _first(columns[8:10])])

    return "\t".join(value or MISSING for value in values)


def _first(values: Sequence[str]) -> str:
    for value in values:
        if value:
            return value
    return ""


def ensure_tshark_available(executable: str) -> str:
    """Resolve ``executable`` on PATH or raise DecoderSpawnFailed."""
    resolved = shutil.which(executable)
    if resolved is None:
        raise DecoderSpawnFailed(
            f"Unable to locate '{executable}'. Install Wireshark/tshark "
            "or point to the binary with --tshark-bin."
        )
    return resolved


class TsharkDecoder:
    """Runs tshark and streams its output as canonical record lines.

    While running, SIGINT terminates tshark instead of the process; the
    resulting end of output then shuts the pipeline down normally.
    """

    def __init__(self, settings: DecoderSettings) -> None:
        self.settings = settings
        self._process: Optional[asyncio.subprocess.Process] = None
        self._terminate_requested = False
        self._signal_installed = False

    # ------------------------------------------------------------------
    async def __aenter__(self) -> "TsharkDecoder":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        await self.stop()

    # ------------------------------------------------------------------
    async def start(self) -> None:
        if self._process is not None:
            raise DecoderSpawnFailed("Decoder already running")

        args = build_tshark_args(self.settings)
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.settings.tshark_bin,
                *args,
                stdout=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise DecoderSpawnFailed(
                f"Failed to start {self.settings.tshark_bin}: {exc}"
            ) from exc

        self._install_signal_handler()
        logger.info("Decoder started: %s %s", self.settings.tshark_bin, " ".join(args))

    def terminate(self) -> None:
        """Ask tshark to exit; its output then reaches EOF."""
        process = self._process
        if process is None or process.returncode is not None:
            return
        self._terminate_requested = True
        logger.info("Stopping decoder")
        try:
            process.terminate()
        except ProcessLookupError:
            logger.debug("Decoder already exited", exc_info=True)

    async def stop(self) -> None:
        process = self._process
        if process is None:
            return
        if process.returncode is None:
            self.terminate()
            await process.wait()
        self._remove_signal_handler()

    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def lines(self) -> AsyncIterator[str]:
        """Yield canonical lines until tshark's output ends.

        Raises DecoderDied if tshark then reports a failure that was not
        caused by :meth:`terminate`.
        """
        if self._process is None:
            await self.start()
        assert self._process is not None and self._process.stdout is not None

        stdout = self._process.stdout
        while True:
            raw = await stdout.readline()
            if not raw:
                break
            text = raw.decode("utf-8", errors="replace")
            if not text.strip():
                continue
            yield normalize_fields(
                text, self.settings.mode, self.settings.port_aggregation
            )

        await self.wait()

    async def wait(self) -> int:
        assert self._process is not None
        returncode = await self._process.wait()
        self._remove_signal_handler()
        if returncode != 0 and not self._terminate_requested:
            raise DecoderDied(
                f"{self.settings.tshark_bin} exited with status {returncode}",
                returncode,
            )
        logger.info("Decoder exited with status %s", returncode)
        return returncode

    # ------------------------------------------------------------------
    def _install_signal_handler(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, self.terminate)
        except (NotImplementedError, RuntimeError, ValueError):
            logger.warning("Cannot install SIGINT handler; interrupting will not stop tshark cleanly")
            return
        self._signal_installed = True

    def _remove_signal_handler(self) -> None:
        if not self._signal_installed:
            return
        asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
        self._signal_installed = False


__all__ = [
    "IP_FIELDS",
    "WLAN_FIELDS",
    "DecoderSettings",
    "TsharkDecoder",
    "build_tshark_args",
    "default_filter",
    "ensure_tshark_available",
    "normalize_fields",
]
