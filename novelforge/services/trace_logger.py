"""
Trace logger for NovelForge.

Producer/consumer channel for TraceRecords: callers `submit()` without
waiting, a consumer task writes each record to the sink (normally the
Supabase persistence service). A full queue drops the record; a sink
failure is logged. Neither ever reaches the caller.
"""

import asyncio
import logging
from typing import Optional, Protocol

from ..models import TraceRecord

logger = logging.getLogger("novelforge.trace_logger")


class TraceStore(Protocol):
    async def store_trace(self, record: TraceRecord) -> bool:
        ...


class TraceLogger:
    """Bounded asyncio queue in front of a trace store."""

    def __init__(self, sink: Optional[TraceStore] = None, max_queue: int = 256):
        self.sink = sink
        self._queue: "asyncio.Queue[TraceRecord]" = asyncio.Queue(maxsize=max_queue)
        self._consumer: Optional[asyncio.Task] = None
        self.dropped = 0
        self.written = 0
        self.failed = 0

    def start(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.get_running_loop().create_task(self._consume())

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    def submit(self, record: TraceRecord) -> bool:
        """Queue a record. Returns False when it had to be dropped."""
        if self.sink is None:
            return False
        try:
            self._queue.put_nowait(record)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                f"[submit] Trace queue full, dropped trace for {record.agent_key}"
                f"{'/' + record.tool_name if record.tool_name else ''}"
            )
            return False

    async def _consume(self) -> None:
        while True:
            record = await self._queue.get()
            try:
                await self.sink.store_trace(record)
                self.written += 1
            except Exception as e:
                self.failed += 1
                logger.warning(f"[_consume] Failed to persist trace for {record.agent_key}: {e}")
            finally:
                self._queue.task_done()

    async def flush(self) -> None:
        """Wait until every queued record has been handed to the sink."""
        if self.running:
            await self._queue.join()

    async def stop(self, drain: bool = True) -> None:
        if self._consumer is None:
            return
        if drain:
            await self.flush()
        self._consumer.cancel()
        await asyncio.gather(self._consumer, return_exceptions=True)
        self._consumer = None
