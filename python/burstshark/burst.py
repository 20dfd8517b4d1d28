"""The burst value accumulated by a flow and handed to the output."""

from __future__ import annotations

from dataclasses import dataclass

from .packet_record import FlowKey, PacketRecord


@dataclass
class Burst:
    src: str
    dst: str
    src_port: int
    dst_port: int
    start: float
    end: float
    packets: int
    size: int

    @classmethod
    def from_packet(cls, packet: PacketRecord) -> "Burst":
        return cls(
            src=packet.src,
            dst=packet.dst,
            src_port=packet.src_port,
            dst_port=packet.dst_port,
            start=packet.time,
            end=packet.time,
            packets=1,
            size=packet.payload_len,
        )

    def extend(self, packet: PacketRecord) -> None:
        self.end = packet.time
        self.packets += 1
        self.size += packet.payload_len

    @property
    def duration(self) -> float:
        return self.end - self.start

    def flow_key(self) -> FlowKey:
        return (self.src, self.dst, self.src_port, self.dst_port)


__all__ = ["Burst"]
