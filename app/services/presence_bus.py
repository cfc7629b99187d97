"""
PresenceBus: in-process fan-out of committed changes to connected principals.

Each websocket holds one Subscription with a bounded queue. Delivery is
FIFO per subscription, which keeps per-pair order because writers publish in
commit order. When a consumer falls behind and its queue fills, the
subscription is closed with a `stream.overflow` event; the client reconnects
and backfills through the messages endpoint. The bus is not a durable queue.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Set

from app.core.config import settings
from app.core.logger import get_logger
from app.enums import EventType

logger = get_logger("presence_bus")


@dataclass(frozen=True)
class Event:
    type: EventType
    payload: dict
    pair_key: Optional[str] = None

    def frame(self) -> dict:
        return {"type": self.type.value, "payload": self.payload}


@dataclass(eq=False)
class Subscription:
    principal_id: str
    bus: "PresenceBus"
    maxsize: int
    queue: asyncio.Queue = field(init=False)
    closed: bool = field(default=False, init=False)

    def __post_init__(self):
        # One slot is reserved for the terminal overflow/close marker
        self.queue = asyncio.Queue(maxsize=self.maxsize + 1)

    def offer(self, event: Event) -> bool:
        if self.closed:
            return False
        if self.queue.qsize() >= self.maxsize:
            logger.warning(f"Subscription for {self.principal_id} overflowed; closing")
            self.queue.put_nowait(Event(EventType.STREAM_OVERFLOW, {"reason": "consumer_too_slow"}))
            self.bus.unsubscribe(self)
            return False
        self.queue.put_nowait(event)
        return True

    async def next_event(self) -> Optional[Event]:
        """Next event, or None once the subscription is closed and drained."""
        if self.closed and self.queue.empty():
            return None
        event = await self.queue.get()
        return event

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        while True:
            event = await self.next_event()
            if event is None:
                return
            yield event
            if event.type == EventType.STREAM_OVERFLOW:
                return

    def unsubscribe(self) -> None:
        self.bus.unsubscribe(self)


class PresenceBus:
    def __init__(self, queue_size: Optional[int] = None):
        self.queue_size = queue_size or settings.PRESENCE_QUEUE_SIZE
        self._subscriptions: Dict[str, Set[Subscription]] = {}

    def subscribe(self, principal_id: str) -> Subscription:
        subscription = Subscription(principal_id=principal_id, bus=self, maxsize=self.queue_size)
        self._subscriptions.setdefault(principal_id, set()).add(subscription)
        logger.debug(f"Subscribed {principal_id} ({len(self._subscriptions[principal_id])} open)")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription.closed:
            return
        subscription.closed = True
        subscribers = self._subscriptions.get(subscription.principal_id)
        if subscribers is not None:
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscriptions[subscription.principal_id]
        # Wake a consumer blocked on an empty queue
        if subscription.queue.empty():
            subscription.queue.put_nowait(None)
        logger.debug(f"Unsubscribed {subscription.principal_id}")

    def subscriber_count(self, principal_id: str) -> int:
        return len(self._subscriptions.get(principal_id, ()))

    async def publish(self, recipient_ids: Iterable[str], event: Event) -> int:
        """Deliver `event` to every open subscription of the given principals."""
        delivered = 0
        for principal_id in dict.fromkeys(recipient_ids):
            for subscription in list(self._subscriptions.get(principal_id, ())):
                if subscription.offer(event):
                    delivered += 1
        return delivered


presence_bus = PresenceBus()


def get_presence_bus() -> PresenceBus:
    return presence_bus
