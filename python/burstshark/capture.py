"""Wires a decoder line stream, the flow generator and the output writer."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterable, Optional

from .burst import Burst
from .config import FlowOptions
from .flow_generator import FlowGenerator
from .output import OutputWriter

logger = logging.getLogger(__name__)


@dataclass
class CaptureStats:
    lines_read: int = 0
    packets: int = 0
    malformed: int = 0
    flows_created: int = 0
    flows_reaped: int = 0
    bursts_emitted: int = 0
    bursts_written: int = 0
    bursts_filtered: int = 0


async def run_capture(
    lines: AsyncIterable[str],
    options: FlowOptions,
    writer: OutputWriter,
) -> CaptureStats:
    """Aggregate ``lines`` into bursts and write them through ``writer``.

    A failure on either side stops the other one and is re-raised: a line
    source error (for instance the decoder dying) cancels the output, a
    write error cancels the flows.
    """

    bursts: "asyncio.Queue[Optional[Burst]]" = asyncio.Queue(
        maxsize=options.channel_capacity
    )
    generator = FlowGenerator(options, bursts)

    with writer:
        output_task = asyncio.create_task(writer.consume(bursts))
        dispatch_task = asyncio.create_task(generator.run(lines))
        try:
            await asyncio.wait(
                {output_task, dispatch_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if output_task.done():
                # The consumer only returns early when it failed.
                dispatch_task.cancel()
                await asyncio.gather(dispatch_task, return_exceptions=True)
                output_task.result()
            else:
                dispatch_task.result()
                await bursts.put(None)
                await output_task
        finally:
            for task in (output_task, dispatch_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(output_task, dispatch_task, return_exceptions=True)

    stats = CaptureStats(
        lines_read=generator.lines_read,
        packets=generator.packets,
        malformed=generator.malformed,
        flows_created=generator.flows_created,
        flows_reaped=generator.flows_reaped,
        bursts_emitted=writer.bursts_received,
        bursts_written=writer.bursts_written,
        bursts_filtered=writer.bursts_filtered,
    )
    logger.info(
        "Capture finished: lines=%d, packets=%d, malformed=%d, flows=%d, bursts=%d",
        stats.lines_read,
        stats.packets,
        stats.malformed,
        stats.flows_created,
        stats.bursts_written,
    )
    return stats


__all__ = ["CaptureStats", "run_capture"]
