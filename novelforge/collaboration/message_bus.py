"""
In-process message bus between agents.

Each subscription is a bounded asyncio queue. Publishing never blocks: a
message that does not fit a subscriber's queue is dropped for that
subscriber only, and it still goes into the capped history log.
"""

import asyncio
import logging
import threading
from collections import deque
from typing import Any, AsyncIterator, Deque, Dict, List, Optional

from ..core.errors import InvalidInputError
from ..core.ids import IdGenerator
from ..models import Message, MessageKind, Recipient, utc_now

logger = logging.getLogger("novelforge.bus")

DEFAULT_CAPACITY = 10
DEFAULT_HISTORY_SIZE = 1000


class Subscription:
    """Receive side of one subscriber."""

    def __init__(self, agent_key: str, capacity: int = DEFAULT_CAPACITY):
        self.agent_key = agent_key
        self._queue: "asyncio.Queue[Optional[Message]]" = asyncio.Queue(maxsize=capacity)
        self.closed = False
        self.dropped = 0

    def offer(self, message: Message) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            return False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # Wake a pending receiver; if the queue is full it will see `closed` once drained.
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            pass

    def pending(self) -> int:
        return self._queue.qsize()

    def get_nowait(self) -> Optional[Message]:
        """Next buffered message, or None when nothing is buffered."""
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    async def receive(self, timeout: Optional[float] = None) -> Optional[Message]:
        """Next message; None once the subscription is closed and drained."""
        if self.closed and self._queue.empty():
            return None
        if timeout is None:
            return await self._queue.get()
        return await asyncio.wait_for(self._queue.get(), timeout)

    def __aiter__(self) -> AsyncIterator[Message]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Message]:
        while True:
            message = await self.receive()
            if message is None:
                return
            yield message


class MessageBus:
    """Publish/subscribe keyed by agent, with a bounded history."""

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        history_size: int = DEFAULT_HISTORY_SIZE,
        ids: Optional[IdGenerator] = None,
    ):
        self.capacity = capacity
        self.ids = ids or IdGenerator()
        self._subscribers: Dict[str, List[Subscription]] = {}
        self._history: Deque[Message] = deque(maxlen=history_size)
        self._lock = threading.Lock()
        self._dropped = 0

    def subscribe(self, agent_key: str) -> Subscription:
        if not agent_key:
            raise InvalidInputError("agent_key must not be empty")
        subscription = Subscription(agent_key, self.capacity)
        with self._lock:
            self._subscribers.setdefault(agent_key, []).append(subscription)
        return subscription

    def unsubscribe(self, agent_key: str, subscription: Subscription) -> bool:
        with self._lock:
            channels = self._subscribers.get(agent_key, [])
            if subscription not in channels:
                return False
            channels.remove(subscription)
            if not channels:
                del self._subscribers[agent_key]
        subscription.close()
        return True

    def publish(self, message: Message) -> Message:
        """Record and deliver a message. Assigns its id when unset."""
        with self._lock:
            if not message.id:
                message.id = self.ids.next_int()
            self._history.append(message)
            if message.recipient.is_broadcast:
                targets = [s for channels in self._subscribers.values() for s in channels]
            else:
                targets = list(self._subscribers.get(message.recipient.agent, []))
            for subscription in targets:
                if not subscription.offer(message):
                    self._dropped += 1
                    logger.debug(
                        f"[publish] Dropped message {message.id} for {subscription.agent_key}: buffer full"
                    )
        return message

    def send(
        self,
        sender: str,
        recipient: Optional[str],
        kind: MessageKind,
        body: str,
        metadata: Optional[Dict[str, Any]] = None,
        reply_to: Optional[int] = None,
    ) -> Message:
        """Build and publish in one step. A None recipient broadcasts."""
        builder = MessageBuilder().sender(sender).kind(kind).body(body)
        builder = builder.to(recipient) if recipient else builder.broadcast()
        for key, value in (metadata or {}).items():
            builder = builder.meta(key, value)
        if reply_to is not None:
            builder = builder.reply_to(reply_to)
        return self.publish(builder.build())

    def history(self, n: Optional[int] = None) -> List[Message]:
        """The most recent n messages, oldest first. No n means every retained message."""
        with self._lock:
            messages = list(self._history)
        if n is None:
            return messages
        if n <= 0:
            return []
        return messages[-n:]

    def conversation(self, agent_a: str, agent_b: str, n: int = 50) -> List[Message]:
        """Most recent n messages sent directly between two agents, oldest first."""
        with self._lock:
            messages = list(self._history)
        selected: List[Message] = []
        for message in reversed(messages):
            if len(selected) >= n:
                break
            recipient = message.recipient.agent
            if recipient is None:
                continue
            if (message.sender, recipient) in ((agent_a, agent_b), (agent_b, agent_a)):
                selected.append(message)
        selected.reverse()
        return selected

    def clear(self) -> None:
        with self._lock:
            self._history.clear()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "total_messages": len(self._history),
                "subscriber_count": sum(len(c) for c in self._subscribers.values()),
                "agent_count": len(self._subscribers),
                "dropped": self._dropped,
            }


class MessageBuilder:
    """Fluent construction of a Message."""

    def __init__(self) -> None:
        self._fields: Dict[str, Any] = {
            "sender": "",
            "recipient": Recipient.broadcast(),
            "kind": MessageKind.NOTIFICATION,
            "body": "",
            "metadata": {},
            "reply_to": None,
        }

    def _with(self, **changes: Any) -> "MessageBuilder":
        builder = MessageBuilder()
        builder._fields = {**self._fields, **changes}
        return builder

    def sender(self, agent_key: str) -> "MessageBuilder":
        return self._with(sender=agent_key)

    def to(self, agent_key: str) -> "MessageBuilder":
        return self._with(recipient=Recipient.to_agent(agent_key))

    def broadcast(self) -> "MessageBuilder":
        return self._with(recipient=Recipient.broadcast())

    def kind(self, kind: MessageKind) -> "MessageBuilder":
        return self._with(kind=MessageKind(kind))

    def body(self, body: str) -> "MessageBuilder":
        return self._with(body=body)

    def meta(self, key: str, value: Any) -> "MessageBuilder":
        return self._with(metadata={**self._fields["metadata"], key: value})

    def reply_to(self, message_id: int) -> "MessageBuilder":
        return self._with(reply_to=message_id)

    def build(self) -> Message:
        if not self._fields["sender"]:
            raise InvalidInputError("message sender must be set")
        return Message(timestamp=utc_now(), **self._fields)
