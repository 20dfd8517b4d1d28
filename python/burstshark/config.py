"""Capture modes, tunables and the per-flow options shared by every worker."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

FLOW_IDLE_SECONDS = 30.0
DEFAULT_BURST_QUIET = 1.0
DEFAULT_MAX_DEVIATION = 50
CHANNEL_CAPACITY = 100
NULL_PORT = 0
SEQ_MODULUS = 4096


class CaptureMode(str, Enum):
    IP = "ip"
    WLAN = "wlan"


class TimeFormat(str, Enum):
    """Which decoder timestamp is fed to the flows."""

    RELATIVE = "relative"
    EPOCH = "epoch"


@dataclass(frozen=True)
class FlowOptions:
    """Settings every flow worker is started with.

    ``burst_quiet`` is the inter-packet gap (seconds) that closes a burst and
    ``flow_idle`` the silence after which an emptied flow releases its worker.
    ``estimate_missing`` and ``max_deviation`` only affect WLAN flows,
    ``port_aggregation`` only IP flows.
    """

    mode: CaptureMode = CaptureMode.IP
    burst_quiet: float = DEFAULT_BURST_QUIET
    flow_idle: float = FLOW_IDLE_SECONDS
    port_aggregation: bool = False
    estimate_missing: bool = True
    max_deviation: int = DEFAULT_MAX_DEVIATION
    flush_on_eof: bool = False
    channel_capacity: int = CHANNEL_CAPACITY

    def __post_init__(self) -> None:
        if not isinstance(self.mode, CaptureMode):
            object.__setattr__(self, "mode", CaptureMode(self.mode))
        if self.burst_quiet <= 0:
            raise ValueError("burst_quiet must be greater than 0 seconds")
        if self.flow_idle <= 0:
            raise ValueError("flow_idle must be greater than 0 seconds")
        if not 0 <= self.max_deviation <= 0xFFFF:
            raise ValueError("max_deviation must fit in 16 bits")
        if self.channel_capacity < 1:
            raise ValueError("channel_capacity must be at least 1")
        if self.port_aggregation and self.mode is CaptureMode.WLAN:
            raise ValueError("port aggregation is only available in IP mode")

    @property
    def is_wlan(self) -> bool:
        return self.mode is CaptureMode.WLAN


__all__ = [
    "FLOW_IDLE_SECONDS",
    "DEFAULT_BURST_QUIET",
    "DEFAULT_MAX_DEVIATION",
    "CHANNEL_CAPACITY",
    "NULL_PORT",
    "SEQ_MODULUS",
    "CaptureMode",
    "TimeFormat",
    "FlowOptions",
]
