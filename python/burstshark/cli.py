"""Command-line entry point printing per-flow bursts from live or saved captures."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Callable, List, Optional

from .capture import CaptureStats, run_capture
from .config import (
    DEFAULT_BURST_QUIET,
    DEFAULT_MAX_DEVIATION,
    FLOW_IDLE_SECONDS,
    CaptureMode,
    FlowOptions,
    TimeFormat,
)
from .decoder import DecoderSettings, TsharkDecoder, ensure_tshark_available
from .exceptions import DecoderDied, DecoderSpawnFailed, SinkWriteFailed
from .output import BurstFilter, OutputWriter
from .pcap_source import PcapFieldSource

logger = logging.getLogger(__name__)


def _bounded_int(limit: int) -> Callable[[str], int]:
    def parse(value: str) -> int:
        try:
            number = int(value)
        except ValueError as exc:
            raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from exc
        if not 0 <= number <= limit:
            raise argparse.ArgumentTypeError(f"must be between 0 and {limit}")
        return number

    return parse


_u16 = _bounded_int(0xFFFF)
_u32 = _bounded_int(0xFFFFFFFF)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="burstshark",
        description=(
            "Group captured packets into per-flow bursts separated by "
            "periods of inactivity."
        ),
    )
    parser.add_argument(
        "-i",
        "--interface",
        help="Network interface to use for live capture.",
    )
    parser.add_argument(
        "-r",
        "--read-file",
        dest="infile",
        type=Path,
        help="Read packet data from a capture file.",
    )
    parser.add_argument(
        "-f",
        "--capture-filter",
        help="Packet filter in libpcap syntax, merged with the default data filter.",
    )
    parser.add_argument(
        "-Y",
        "--display-filter",
        help="Wireshark display filter, merged with the default data filter (requires -r).",
    )
    parser.add_argument(
        "-t",
        "--inactive-time",
        dest="burst_quiet",
        type=float,
        default=DEFAULT_BURST_QUIET,
        metavar="SECONDS",
        help=f"Seconds with no activity that end a burst (default: {DEFAULT_BURST_QUIET}).",
    )
    parser.add_argument(
        "--flow-idle",
        type=float,
        default=FLOW_IDLE_SECONDS,
        metavar="SECONDS",
        help=f"Seconds of silence after which a flow is forgotten (default: {FLOW_IDLE_SECONDS:g}).",
    )
    parser.add_argument(
        "-p",
        "--ignore-ports",
        action="store_true",
        help="Ignore ports and build bursts on IP address pairs only.",
    )
    parser.add_argument(
        "-w",
        "--write-capture",
        dest="capture_outfile",
        type=Path,
        help="Write the packets captured by tshark to a capture file.",
    )
    parser.add_argument(
        "-W",
        "--write-bursts",
        dest="bursts_outfile",
        type=Path,
        help="Also write burst lines to this file.",
    )
    parser.add_argument(
        "-q",
        "--suppress",
        action="store_true",
        help="Don't print bursts on standard output.",
    )
    parser.add_argument("-b", "--min-bytes", type=_u32, help="Only show bursts of at least this many bytes.")
    parser.add_argument("-B", "--max-bytes", type=_u32, help="Only show bursts of at most this many bytes.")
    parser.add_argument("-n", "--min-packets", type=_u16, help="Only show bursts of at least this many packets.")
    parser.add_argument("-N", "--max-packets", type=_u16, help="Only show bursts of at most this many packets.")
    parser.add_argument(
        "-T",
        "--time-format",
        choices=[fmt.value for fmt in TimeFormat],
        default=TimeFormat.RELATIVE.value,
        help="Relative to the first packet, or seconds since the UNIX epoch.",
    )
    parser.add_argument(
        "-I",
        "--monitor-mode",
        action="store_true",
        help="Capture 802.11 WLAN QoS data frames instead of IP packets.",
    )
    parser.add_argument(
        "-G",
        "--no-guess",
        action="store_true",
        help="Don't estimate the size of WLAN frames missed by the monitor mode device.",
    )
    parser.add_argument(
        "-M",
        "--max-deviation",
        type=_u16,
        help=f"Largest accepted deviation from the expected WLAN sequence number (default: {DEFAULT_MAX_DEVIATION}).",
    )
    parser.add_argument(
        "--flush-on-eof",
        action="store_true",
        help="Print in-progress bursts when the input ends instead of dropping them.",
    )
    parser.add_argument(
        "--decoder",
        choices=["tshark", "dpkt"],
        default="tshark",
        help="Packet decoder; dpkt reads IP capture files without tshark.",
    )
    parser.add_argument(
        "--tshark-bin",
        default="tshark",
        help="tshark executable to run (default: tshark).",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="WARNING",
        help="Log level for diagnostic output on standard error.",
    )
    parser.add_argument(
        "filter",
        nargs="*",
        help="Filter expression, as an alternative to -f or -Y.",
    )
    return parser


def validate_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    if args.infile is not None and args.interface:
        parser.error("-r/--read-file cannot be combined with -i/--interface")
    if args.infile is not None and args.capture_filter:
        parser.error("-f/--capture-filter cannot be used when reading a file; use -Y")
    if args.display_filter and args.infile is None:
        parser.error("-Y/--display-filter requires -r/--read-file")
    if args.filter and (args.capture_filter or args.display_filter):
        parser.error("a positional filter cannot be combined with -f or -Y")
    if args.ignore_ports and args.monitor_mode:
        parser.error("-p/--ignore-ports cannot be combined with -I/--monitor-mode")
    if (args.no_guess or args.max_deviation is not None) and not args.monitor_mode:
        parser.error("-G/--no-guess and -M/--max-deviation require -I/--monitor-mode")
    if args.decoder == "dpkt":
        if args.infile is None:
            parser.error("the dpkt decoder requires -r/--read-file")
        if args.monitor_mode:
            parser.error("the dpkt decoder only supports IP captures")
        if args.capture_outfile is not None or args.display_filter or args.filter:
            parser.error("the dpkt decoder does not support filters or -w")


def build_options(args: argparse.Namespace) -> FlowOptions:
    max_deviation = args.max_deviation
    if max_deviation is None:
        max_deviation = DEFAULT_MAX_DEVIATION
    return FlowOptions(
        mode=CaptureMode.WLAN if args.monitor_mode else CaptureMode.IP,
        burst_quiet=args.burst_quiet,
        flow_idle=args.flow_idle,
        port_aggregation=args.ignore_ports,
        estimate_missing=not args.no_guess,
        max_deviation=max_deviation,
        flush_on_eof=args.flush_on_eof,
    )


def build_decoder_settings(args: argparse.Namespace, options: FlowOptions) -> DecoderSettings:
    capture_filter = args.capture_filter
    display_filter = args.display_filter
    if args.filter:
        joined = " ".join(args.filter)
        if args.infile is not None:
            display_filter = joined
        else:
            capture_filter = joined

    return DecoderSettings(
        mode=options.mode,
        interface=args.interface,
        infile=args.infile,
        capture_filter=capture_filter,
        display_filter=display_filter,
        capture_outfile=args.capture_outfile,
        time_format=TimeFormat(args.time_format),
        port_aggregation=options.port_aggregation,
        tshark_bin=args.tshark_bin,
    )


async def _run(
    args: argparse.Namespace,
    options: FlowOptions,
    writer: OutputWriter,
) -> CaptureStats:
    if args.decoder == "dpkt":
        source = PcapFieldSource(
            args.infile,
            time_format=TimeFormat(args.time_format),
            port_aggregation=options.port_aggregation,
        )
        return await run_capture(source.lines(), options, writer)

    settings = build_decoder_settings(args, options)
    ensure_tshark_available(settings.tshark_bin)
    async with TsharkDecoder(settings) as decoder:
        return await run_capture(decoder.lines(), options, writer)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level))
    validate_args(parser, args)

    try:
        options = build_options(args)
    except ValueError as exc:
        parser.error(str(exc))

    writer = OutputWriter(
        BurstFilter(
            min_bytes=args.min_bytes,
            max_bytes=args.max_bytes,
            min_packets=args.min_packets,
            max_packets=args.max_packets,
        ),
        outfile=args.bursts_outfile,
        suppress=args.suppress,
    )

    try:
        stats = asyncio.run(_run(args, options, writer))
    except (DecoderSpawnFailed, DecoderDied, SinkWriteFailed) as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130

    logger.info(
        "Finished: packets=%d, malformed=%d, bursts written=%d, filtered=%d",
        stats.packets,
        stats.malformed,
        stats.bursts_written,
        stats.bursts_filtered,
    )
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
