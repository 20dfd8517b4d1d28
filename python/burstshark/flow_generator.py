"""Flow table and dispatcher routing decoder lines to per-flow workers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterable, Dict, List, Optional, Set

from .burst import Burst
from .config import FlowOptions
from .exceptions import MalformedRecord
from .flow_worker import END_OF_FLOW, flow_worker
from .packet_record import FlowKey, PacketRecord, parse_record

logger = logging.getLogger(__name__)


@dataclass
class FlowHandle:
    inbox: "asyncio.Queue[Optional[PacketRecord]]"
    task: "asyncio.Task[None]"


class FlowGenerator:
    """Routes packets to one worker per flow key and reaps idle workers.

    Workers announce self-termination on the reap channel. Pending reaps are
    applied before every routing decision, and an entry whose worker has
    already finished is reaped on the spot, so a packet is never queued for
    a worker that is gone. Packets buffered for a worker while it was
    announcing its exit are handed to a fresh worker for the same key.
    """

    def __init__(
        self,
        options: FlowOptions,
        bursts: "asyncio.Queue[Optional[Burst]]",
    ) -> None:
        self.options = options
        self.bursts = bursts
        self.current_flows: Dict[FlowKey, FlowHandle] = {}
        self._reaps: "asyncio.Queue[FlowKey]" = asyncio.Queue(
            maxsize=options.channel_capacity
        )
        self._tasks: Set["asyncio.Task[None]"] = set()
        self._reaper: Optional["asyncio.Task[None]"] = None
        self._failure: Optional[BaseException] = None
        self._closing = False
        self.lines_read = 0
        self.packets = 0
        self.malformed = 0
        self.flows_created = 0
        self.flows_reaped = 0

    # ------------------------------------------------------------------
    async def run(self, lines: AsyncIterable[str]) -> None:
        """Dispatch every line of ``lines`` and shut the flows down at EOF."""
        self.start()
        try:
            async for line in lines:
                await self.add_line(line)
            await self.close()
        finally:
            self.abort()

    def start(self) -> None:
        if self._reaper is None:
            self._reaper = asyncio.create_task(self._reap_loop())

    async def add_line(self, line: str) -> None:
        self.lines_read += 1
        try:
            packet = parse_record(
                line, self.options.mode, self.options.port_aggregation
            )
        except MalformedRecord as exc:
            self.malformed += 1
            logger.debug("Skipping malformed record %r: %s", exc.line, exc)
            return
        await self.add_packet(packet)

    async def add_packet(self, packet: PacketRecord) -> None:
        self._raise_worker_failure()
        self._drain_reaps()
        self.packets += 1

        await self._route(packet)

    async def close(self) -> None:
        """End the input of every flow and wait for the workers to finish.

        Workers handle whatever is still buffered, then drop (or, with
        ``flush_on_eof``, emit) their in-progress burst.
        """
        self._drain_reaps()
        for flow_key, handle in list(self.current_flows.items()):
            if handle.task.done():
                self._reap(flow_key)
        # Any exit announced from here on leaves only the sentinel behind.
        self._closing = True
        for handle in list(self.current_flows.values()):
            if not handle.task.done():
                await handle.inbox.put(END_OF_FLOW)
        self.current_flows.clear()

        # The reaper keeps running so no worker blocks announcing its exit.
        if self._tasks:
            await asyncio.gather(*self._tasks)
        self._stop_reaper()
        self._raise_worker_failure()

    def abort(self) -> None:
        """Cancel the reaper and any worker still running."""
        self._stop_reaper()
        for task in list(self._tasks):
            task.cancel()

    @property
    def active_flows(self) -> int:
        return len(self.current_flows)

    # ------------------------------------------------------------------
    def _spawn(
        self,
        flow_key: FlowKey,
        pending: Optional[List[PacketRecord]] = None,
    ) -> FlowHandle:
        inbox: "asyncio.Queue[Optional[PacketRecord]]" = asyncio.Queue(
            maxsize=self.options.channel_capacity
        )
        for packet in pending or ():
            inbox.put_nowait(packet)

        task = asyncio.create_task(
            flow_worker(flow_key, self.options, inbox, self.bursts, self._reaps)
        )
        self._tasks.add(task)
        task.add_done_callback(self._worker_done)

        handle = FlowHandle(inbox=inbox, task=task)
        self.current_flows[flow_key] = handle
        self.flows_created += 1
        logger.debug("New flow %s (%d active)", flow_key, len(self.current_flows))
        return handle

    def _worker_done(self, task: "asyncio.Task[None]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and self._failure is None:
            logger.error("Flow worker failed: %s", exc)
            self._failure = exc

    def _raise_worker_failure(self) -> None:
        if self._failure is not None:
            raise self._failure

    async def _route(self, packet: PacketRecord) -> None:
        flow_key = packet.flow_key()
        handle = self.current_flows.get(flow_key)
        if handle is not None and handle.task.done():
            self._reap(flow_key)
            handle = self.current_flows.get(flow_key)
        if handle is None:
            handle = self._spawn(flow_key)

        await handle.inbox.put(packet)

        # The worker was reaped while the put waited for room, so the packet
        # landed in an inbox nobody reads.
        if self.current_flows.get(flow_key) is not handle:
            for stranded in self._take_buffered(handle):
                await self._route(stranded)

    @staticmethod
    def _take_buffered(handle: FlowHandle) -> List[PacketRecord]:
        buffered: List[PacketRecord] = []
        while True:
            try:
                packet = handle.inbox.get_nowait()
            except asyncio.QueueEmpty:
                return buffered
            if packet is not END_OF_FLOW:
                buffered.append(packet)

    def _reap(self, flow_key: FlowKey) -> None:
        handle = self.current_flows.get(flow_key)
        # A notice may arrive after a replacement worker took over the key.
        if handle is None or not handle.task.done():
            return
        del self.current_flows[flow_key]
        self.flows_reaped += 1

        pending = self._take_buffered(handle)

        if pending and not self._closing:
            logger.debug(
                "Flow %s released with %d buffered packets, restarting",
                flow_key,
                len(pending),
            )
            self._spawn(flow_key, pending)
        else:
            logger.debug("Reaped flow %s (%d active)", flow_key, len(self.current_flows))

    def _drain_reaps(self) -> None:
        while True:
            try:
                flow_key = self._reaps.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._reap(flow_key)

    async def _reap_loop(self) -> None:
        while True:
            flow_key = await self._reaps.get()
            self._reap(flow_key)

    def _stop_reaper(self) -> None:
        if self._reaper is not None:
            self._reaper.cancel()
            self._reaper = None


__all__ = ["FlowGenerator", "FlowHandle"]
