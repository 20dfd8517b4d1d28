"""Per-flow burst state machines for IP and WLAN captures."""

from __future__ import annotations

from typing import Optional, Union

from .burst import Burst
from .config import SEQ_MODULUS, FlowOptions
from .packet_record import PacketRecord

_HALF_SEQ = SEQ_MODULUS // 2


def seq_diff(observed: int, expected: int) -> int:
    """Signed distance from ``expected`` to ``observed`` in (-2048, 2048]."""
    diff = (observed - expected) % SEQ_MODULUS
    if diff > _HALF_SEQ:
        diff -= SEQ_MODULUS
    return diff


def next_seq(seq: int) -> int:
    return (seq + 1) % SEQ_MODULUS


class IpFlow:
    """Bursts of UDP and payload-bearing TCP packets; no loss reasoning."""

    __slots__ = ("current_burst",)

    def __init__(self) -> None:
        self.current_burst: Optional[Burst] = None

    def add_packet(self, packet: PacketRecord) -> None:
        if self.current_burst is None:
            self.current_burst = Burst.from_packet(packet)
            return
        self.current_burst.extend(packet)

    def reset_burst(self) -> None:
        self.current_burst = None


class WlanFlow:
    """Bursts of 802.11 QoS data frames seen by a monitor mode receiver.

    The receiver may miss frames or see retransmissions, so each accepted
    frame is checked against the sequence number the flow expects next:

    * a recent past number is a retransmission and only keeps the burst alive;
    * a modest jump forward means frames were lost, whose count (and, with
      ``estimate_missing``, size) is inferred from the jump;
    * anything further away is treated as a stray frame and dropped, while
      the expected number creeps forward by one.
    """

    __slots__ = (
        "current_burst",
        "estimate_missing",
        "max_deviation",
        "expected_seq",
        "last_payload",
    )

    def __init__(self, estimate_missing: bool = True, max_deviation: int = 50) -> None:
        self.current_burst: Optional[Burst] = None
        self.estimate_missing = estimate_missing
        self.max_deviation = max_deviation
        self.expected_seq = 0
        self.last_payload = 0

    def add_packet(self, packet: PacketRecord) -> None:
        seq = packet.seq_number
        if seq is None:
            raise ValueError("WLAN flows require frames with a sequence number")

        burst = self.current_burst
        if burst is None:
            self.current_burst = Burst.from_packet(packet)
            self._accept(seq, packet.payload_len)
            return

        if seq == self.expected_seq:
            burst.extend(packet)
            self._accept(seq, packet.payload_len)
            return

        diff = seq_diff(seq, self.expected_seq)

        # Already counted; the first copy may have been missed so the retry
        # flag alone is not enough to spot these.
        if -self.max_deviation < diff < 0:
            burst.end = packet.time
            return

        if 0 < diff < self.max_deviation:
            if self.estimate_missing:
                estimate = (self.last_payload + packet.payload_len) // 2
                burst.packets += diff
                burst.size += estimate * diff
            else:
                burst.packets += 1
                burst.size += packet.payload_len
            burst.end = packet.time
            self._accept(seq, packet.payload_len)
            return

        self.expected_seq = next_seq(self.expected_seq)

    def reset_burst(self) -> None:
        self.current_burst = None

    def _accept(self, seq: int, payload_len: int) -> None:
        self.expected_seq = next_seq(seq)
        self.last_payload = payload_len


Flow = Union[IpFlow, WlanFlow]


def create_flow(options: FlowOptions) -> Flow:
    if options.is_wlan:
        return WlanFlow(
            estimate_missing=options.estimate_missing,
            max_deviation=options.max_deviation,
        )
    return IpFlow()


__all__ = ["Flow", "IpFlow", "WlanFlow", "create_flow", "next_seq", "seq_diff"]
