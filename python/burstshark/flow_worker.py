"""The asyncio task that owns one flow, its timers and its burst emission."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .burst import Burst
from .config import FlowOptions
from .flow import create_flow
from .packet_record import FlowKey, PacketRecord

logger = logging.getLogger(__name__)

# Queued behind the pending packets of a flow when its input ends.
END_OF_FLOW = None


async def flow_worker(
    flow_key: FlowKey,
    options: FlowOptions,
    inbox: "asyncio.Queue[Optional[PacketRecord]]",
    bursts: "asyncio.Queue[Optional[Burst]]",
    reaps: "asyncio.Queue[FlowKey]",
) -> None:
    """Consume packets of ``flow_key`` until its input ends or it goes idle.

    While a burst is in progress the worker waits ``burst_quiet`` seconds of
    wall-clock time for the next packet and emits the burst when none comes.
    With no burst it waits ``flow_idle`` seconds, then announces itself on
    ``reaps`` and returns. Packet timestamps are checked as well, so a
    replayed capture whose packets arrive back to back still splits bursts
    on the recorded gaps.
    """

    flow = create_flow(options)

    while True:
        burst = flow.current_burst
        timeout = options.burst_quiet if burst is not None else options.flow_idle

        try:
            packet = await asyncio.wait_for(inbox.get(), timeout)
        except asyncio.TimeoutError:
            if burst is not None:
                await bursts.put(burst)
                flow.reset_burst()
                continue

            logger.debug("Flow %s idle for %.1fs, releasing", flow_key, timeout)
            await reaps.put(flow_key)
            return

        if packet is END_OF_FLOW:
            if burst is not None and options.flush_on_eof:
                await bursts.put(burst)
                flow.reset_burst()
            return

        if burst is not None and packet.time - burst.end > options.burst_quiet:
            await bursts.put(burst)
            flow.reset_burst()

        flow.add_packet(packet)


__all__ = ["END_OF_FLOW", "flow_worker"]
