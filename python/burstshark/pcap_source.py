"""Offline IP field source reading capture files with dpkt instead of tshark."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
from pathlib import Path
from typing import IO, AsyncIterator, Iterator, Optional, Union

import dpkt
from dpkt.ethernet import VLANtag8021Q

from .config import TimeFormat
from .exceptions import DecoderSpawnFailed
from .packet_record import PacketRecord

logger = logging.getLogger(__name__)

LINKTYPE_ETHERNET = 1
LINKTYPE_RAW = 101
LINKTYPE_LINUX_SLL = 113
# DLT_RAW differs between platforms.
RAW_LINKTYPES = frozenset({12, 14, LINKTYPE_RAW})


def format_ip(value: bytes) -> str:
    """Convert a raw IPv4/IPv6 address buffer into its textual form."""
    if len(value) == 4:
        return str(ipaddress.IPv4Address(value))
    return str(ipaddress.IPv6Address(value))


class PcapFieldSource:
    """Yields canonical IP record lines for a capture file without tshark.

    Only UDP datagrams and TCP segments carrying payload are kept, matching
    the default decoder filter. Two differences from the tshark decoder
    remain. Payload length is always the transport payload, while tshark
    falls back to ``udp.length`` (8-byte header included) for UDP it
    dissects itself, such as DNS or QUIC. IPv6 packets are kept, while the
    tshark field list only carries IPv4 addresses.
    """

    def __init__(
        self,
        pcap_path: Union[str, Path],
        *,
        time_format: TimeFormat = TimeFormat.RELATIVE,
        port_aggregation: bool = False,
    ) -> None:
        self.path = Path(pcap_path)
        self.time_format = time_format
        self.port_aggregation = port_aggregation
        self.frames_read = 0
        self.first_timestamp: Optional[float] = None

    # ------------------------------------------------------------------
    async def lines(self) -> AsyncIterator[str]:
        """Yield one canonical line per kept packet.

        Frames are read with blocking dpkt calls on the event loop thread,
        which suits local capture files; other tasks only run between
        records.
        """
        for record in self.records():
            yield record.to_line(include_ports=not self.port_aggregation)
            # Let the flow workers run between packets.
            await asyncio.sleep(0)

    def records(self) -> Iterator[PacketRecord]:
        handle = self._open_file()
        try:
            reader = self._open_reader(handle)
            linktype = reader.datalink()
            for timestamp, frame in reader:
                self.frames_read += 1
                record = self._decode_frame(float(timestamp), frame, linktype)
                if record is not None:
                    yield record
        finally:
            handle.close()

    # ------------------------------------------------------------------
    def _open_file(self) -> IO[bytes]:
        try:
            return self.path.open("rb")
        except OSError as exc:
            raise DecoderSpawnFailed(f"Cannot read capture file: {self.path}") from exc

    def _open_reader(self, handle: IO[bytes]):
        try:
            return dpkt.pcap.Reader(handle)
        except (ValueError, dpkt.dpkt.NeedData):
            handle.seek(0)
        try:
            return dpkt.pcapng.Reader(handle)
        except (ValueError, dpkt.dpkt.NeedData) as exc:
            raise DecoderSpawnFailed(f"Unsupported capture file format: {self.path}") from exc

    def _decode_frame(
        self, timestamp: float, frame: bytes, linktype: int
    ) -> Optional[PacketRecord]:
        try:
            if linktype == LINKTYPE_ETHERNET:
                payload = dpkt.ethernet.Ethernet(frame).data
                if isinstance(payload, VLANtag8021Q):
                    payload = payload.data
            elif linktype == LINKTYPE_LINUX_SLL:
                payload = dpkt.sll.SLL(frame).data
            elif linktype in RAW_LINKTYPES:
                version = frame[0] >> 4 if frame else 0
                if version == 4:
                    payload = dpkt.ip.IP(frame)
                elif version == 6:
                    payload = dpkt.ip6.IP6(frame)
                else:
                    return None
            else:
                logger.debug("Skipping frame with unsupported link type %d", linktype)
                return None
        except (dpkt.UnpackError, ValueError, IndexError):
            logger.debug("Skipping undecodable frame", exc_info=True)
            return None

        if not isinstance(payload, (dpkt.ip.IP, dpkt.ip6.IP6)):
            return None

        transport = payload.data
        if isinstance(transport, dpkt.udp.UDP):
            payload_len = len(transport.data)
        elif isinstance(transport, dpkt.tcp.TCP):
            payload_len = len(transport.data)
            if payload_len == 0:
                return None
        else:
            return None

        return PacketRecord(
            time=self._timestamp(timestamp),
            src=format_ip(payload.src),
            dst=format_ip(payload.dst),
            payload_len=payload_len,
            src_port=transport.sport,
            dst_port=transport.dport,
        )

    def _timestamp(self, timestamp: float) -> float:
        if self.first_timestamp is None:
            self.first_timestamp = timestamp
        if self.time_format is TimeFormat.EPOCH:
            return timestamp
        return timestamp - self.first_timestamp


__all__ = ["PcapFieldSource", "format_ip"]
