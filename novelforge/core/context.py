"""
Request context for NovelForge.

Each request carries a cancellation token with an optional deadline. Every
suspension point (model calls, retrieval, graph queries, scheduler waits)
goes through `CancellationToken.guard` so that cancelling the request, or
letting its deadline pass, aborts whatever is in flight.
"""

import asyncio
import time
import weakref
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List, Optional, TypeVar, Union
from uuid import uuid4

from ..models import TraceRecord
from .errors import OperationCancelledError

T = TypeVar("T")


class CancellationToken:
    """An asyncio.Event plus a monotonic deadline."""

    def __init__(self, timeout: Optional[float] = None, parent: Optional["CancellationToken"] = None):
        self._event = asyncio.Event()
        self._children: "weakref.WeakSet[CancellationToken]" = weakref.WeakSet()
        self.reason: Optional[str] = None
        self._deadline: Optional[float] = None
        if timeout is not None:
            self._deadline = time.monotonic() + timeout
        if parent is not None:
            if parent._deadline is not None:
                self._deadline = (
                    parent._deadline if self._deadline is None
                    else min(self._deadline, parent._deadline)
                )
            parent._children.add(self)
            if parent.cancelled:
                self.cancel(parent.reason or "parent cancelled")

    def child(self, timeout: Optional[float] = None) -> "CancellationToken":
        """Derive a token that fires with this one or after its own timeout."""
        return CancellationToken(timeout=timeout, parent=self)

    def cancel(self, reason: str = "cancelled") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        for child in list(self._children):
            child.cancel(reason)

    @property
    def cancelled(self) -> bool:
        if not self._event.is_set() and self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel("deadline exceeded")
        return self._event.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when there is none."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelledError(self.reason or "cancelled")

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable` unless the token fires first.

        On cancellation or deadline the in-flight work is cancelled and
        OperationCancelledError is raised.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise OperationCancelledError(self.reason or "cancelled")

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {work, waiter},
                timeout=self.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            work.cancel()
            waiter.cancel()
            raise

        if work in done:
            waiter.cancel()
            return work.result()

        if not done:
            self.cancel("deadline exceeded")
        waiter.cancel()
        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        raise OperationCancelledError(self.reason or "cancelled")

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class Request:
    """One user request as handed over by the transport layer."""
    user_id: str
    instruction: str
    project_id: Optional[Union[int, str]] = None
    extras: Dict[str, Any] = field(default_factory=dict)
    token: CancellationToken = field(default_factory=CancellationToken)
    request_id: str = field(default_factory=lambda: uuid4().hex)
    traces: List[TraceRecord] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        user_id: str,
        instruction: str,
        project_id: Optional[Union[int, str]] = None,
        extras: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> "Request":
        return cls(
            user_id=user_id,
            instruction=instruction,
            project_id=project_id,
            extras=dict(extras or {}),
            token=CancellationToken(timeout=timeout),
        )

    def record(self, trace: TraceRecord) -> None:
        self.traces.append(trace)
