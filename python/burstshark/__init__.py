"""Per-flow burst aggregation over tshark or dpkt packet field streams."""

from .burst import Burst
from .capture import CaptureStats, run_capture
from .config import CaptureMode, FlowOptions, TimeFormat
from .decoder import DecoderSettings, TsharkDecoder, build_tshark_args, normalize_fields
from .exceptions import (
    BurstSharkError,
    DecoderDied,
    DecoderSpawnFailed,
    MalformedRecord,
    SinkWriteFailed,
)
from .flow import IpFlow, WlanFlow, create_flow, seq_diff
from .flow_generator import FlowGenerator
from .flow_worker import flow_worker
from .output import BurstFilter, OutputWriter, format_burst
from .packet_record import PacketRecord, parse_record
from .pcap_source import PcapFieldSource

__all__ = [
    "Burst",
    "CaptureStats",
    "run_capture",
    "CaptureMode",
    "FlowOptions",
    "TimeFormat",
    "DecoderSettings",
    "TsharkDecoder",
    "build_tshark_args",
    "normalize_fields",
    "BurstSharkError",
    "DecoderDied",
    "DecoderSpawnFailed",
    "MalformedRecord",
    "SinkWriteFailed",
    "IpFlow",
    "WlanFlow",
    "create_flow",
    "seq_diff",
    "FlowGenerator",
    "flow_worker",
    "BurstFilter",
    "OutputWriter",
    "format_burst",
    "PacketRecord",
    "parse_record",
    "PcapFieldSource",
]
