"""
Typed stream channel between a producing agent call and its consumer.

The producer sends content deltas and closes the channel with exactly one
terminal event (done, error or cancelled). The consumer iterates deltas with
``async for`` and may call `cancel()` to tear the upstream call down.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, List, Optional

logger = logging.getLogger("novelforge.streaming")


class StreamEventKind(str, Enum):
    DELTA = "delta"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StreamEvent:
    kind: StreamEventKind
    content: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.kind != StreamEventKind.DELTA


class StreamChannel:
    """Unbounded producer/consumer queue of StreamEvents."""

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[StreamEvent]" = asyncio.Queue()
        self._closed = False
        self._cancelled = asyncio.Event()
        self.terminal: Optional[StreamEvent] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def send_delta(self, content: str) -> None:
        if self._closed or not content:
            return
        self._queue.put_nowait(StreamEvent(StreamEventKind.DELTA, content))

    def _close(self, event: StreamEvent) -> None:
        if self._closed:
            logger.debug(f"[_close] Channel already closed, ignoring {event.kind.value}")
            return
        self._closed = True
        self.terminal = event
        self._queue.put_nowait(event)

    def close_done(self, content: str = "") -> None:
        self._close(StreamEvent(StreamEventKind.DONE, content))

    def close_error(self, message: str) -> None:
        self._close(StreamEvent(StreamEventKind.ERROR, message))

    def close_cancelled(self, reason: str = "cancelled") -> None:
        self._close(StreamEvent(StreamEventKind.CANCELLED, reason))

    def cancel(self) -> None:
        """Consumer side: ask the producer to stop."""
        self._cancelled.set()

    async def wait_cancelled(self) -> None:
        await self._cancelled.wait()

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Yield every event including the terminal one."""
        while True:
            event = await self._queue.get()
            yield event
            if event.is_terminal:
                return

    def __aiter__(self) -> AsyncIterator[str]:
        return self._deltas()

    async def _deltas(self) -> AsyncIterator[str]:
        async for event in self.events():
            if event.kind == StreamEventKind.DELTA:
                yield event.content

    async def collect(self) -> List[StreamEvent]:
        return [event async for event in self.events()]
