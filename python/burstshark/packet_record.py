"""Packet records parsed from one line of the decoder's field output."""

from __future__ import annotations

import ipaddress
import math
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .config import NULL_PORT, SEQ_MODULUS, CaptureMode
from .exceptions import MalformedRecord

FlowKey = Tuple[str, str, int, int]

_MAC_RE = re.compile(r"^[0-9a-fA-F]{2}([:-])(?:[0-9a-fA-F]{2}\1){4}[0-9a-fA-F]{2}$")


@dataclass(frozen=True)
class PacketRecord:
    time: float
    src: str
    dst: str
    payload_len: int
    src_port: int = NULL_PORT
    dst_port: int = NULL_PORT
    seq_number: Optional[int] = None

    # Flow key helpers ----------------------------------------------------
    def flow_key(self) -> FlowKey:
        return (self.src, self.dst, self.src_port, self.dst_port)

    def to_line(self, include_ports: bool = True) -> str:
        """Render the record back into the canonical decoder field order."""
        fields = [repr(self.time), self.src, self.dst, str(self.payload_len)]
        if self.seq_number is not None:
            fields.append(str(self.seq_number))
        elif include_ports:
            fields.extend([str(self.src_port), str(self.dst_port)])
        return "\t".join(fields)


def parse_record(
    line: str,
    mode: CaptureMode,
    port_aggregation: bool = False,
) -> PacketRecord:
    """Parse ``line`` into a :class:`PacketRecord` or raise MalformedRecord.

    IP lines carry ``time src dst payload_len src_port dst_port``; the ports
    are absent (and ignored if present) when ``port_aggregation`` is on.
    WLAN lines carry ``time src_mac dst_mac payload_len seq_number``.
    """

    fields = line.split()
    if not fields:
        raise MalformedRecord("empty record", line)

    time = _parse_time(_field(fields, 0, "time", line), line)
    src_raw = _field(fields, 1, "source", line)
    dst_raw = _field(fields, 2, "destination", line)
    payload_len = _parse_int(_field(fields, 3, "length", line), "length", line)
    if payload_len < 0:
        raise MalformedRecord(f"negative payload length {payload_len}", line)

    if mode is CaptureMode.WLAN:
        seq_number = _parse_int(
            _field(fields, 4, "sequence number", line), "sequence number", line
        )
        if not 0 <= seq_number < SEQ_MODULUS:
            raise MalformedRecord(f"sequence number out of range: {seq_number}", line)
        return PacketRecord(
            time=time,
            src=_parse_mac(src_raw, line),
            dst=_parse_mac(dst_raw, line),
            payload_len=payload_len,
            seq_number=seq_number,
        )

    src = _parse_address(src_raw, line)
    dst = _parse_address(dst_raw, line)
    if port_aggregation:
        return PacketRecord(time=time, src=src, dst=dst, payload_len=payload_len)

    src_port = _parse_port(_field(fields, 4, "source port", line), line)
    dst_port = _parse_port(_field(fields, 5, "destination port", line), line)
    return PacketRecord(
        time=time,
        src=src,
        dst=dst,
        payload_len=payload_len,
        src_port=src_port,
        dst_port=dst_port,
    )


def _field(fields: List[str], index: int, name: str, line: str) -> str:
    if index >= len(fields):
        raise MalformedRecord(f"no {name}", line)
    return fields[index]


def _parse_time(value: str, line: str) -> float:
    try:
        time = float(value)
    except ValueError as exc:
        raise MalformedRecord(f"invalid time {value!r}", line) from exc
    if not math.isfinite(time):
        raise MalformedRecord(f"non-finite time {value!r}", line)
    return time


def _parse_int(value: str, name: str, line: str) -> int:
    try:
        return int(value)
    except ValueError as exc:
        raise MalformedRecord(f"invalid {name} {value!r}", line) from exc


def _parse_port(value: str, line: str) -> int:
    port = _parse_int(value, "port", line)
    if not 0 <= port <= 0xFFFF:
        raise MalformedRecord(f"port out of range: {port}", line)
    return port


def _parse_address(value: str, line: str) -> str:
    try:
        ipaddress.ip_address(value)
    except ValueError as exc:
        raise MalformedRecord(f"invalid address {value!r}", line) from exc
    return value


def _parse_mac(value: str, line: str) -> str:
    if not _MAC_RE.match(value):
        raise MalformedRecord(f"invalid MAC address {value!r}", line)
    return value.replace("-", ":").lower()


__all__ = ["FlowKey", "PacketRecord", "parse_record"]
