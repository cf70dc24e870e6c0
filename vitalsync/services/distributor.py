"""
Realtime distributor: an in-process publish/subscribe hub.

Key properties:
- Publishing never blocks. Each subscriber owns a bounded queue; when it is full the
  oldest undelivered event is dropped so one slow reader cannot stall ingestion.
- Per-publisher order is preserved for every subscriber (FIFO queues).
- Not a durable log: closed subscriptions lose whatever was still queued, and late
  subscribers see nothing from before they connected.
"""

import asyncio
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from typing import Any
from uuid import uuid4

import structlog

from vitalsync.domain.models import RealtimeEvent, Topic

logger = structlog.get_logger(__name__)

_CLOSED = object()


class Subscription:
    """A live observer's registration: topics, optional patient scope, pending events."""

    def __init__(
        self,
        distributor: "RealtimeDistributor",
        topics: frozenset[Topic],
        patient_id: str | None,
        queue_size: int,
    ) -> None:
        self.id = uuid4().hex
        self.topics = topics
        self.patient_id = patient_id
        self.dropped = 0
        self._distributor = distributor
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=queue_size)
        self._closed = False
        self.logger = logger.bind(subscription_id=self.id)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def wants(self, event: RealtimeEvent) -> bool:
        if event.topic not in self.topics:
            return False
        return self.patient_id is None or self.patient_id == event.patient_id

    def offer(self, event: RealtimeEvent) -> None:
        """Enqueue without blocking, evicting the oldest event if the queue is full."""
        if self._closed:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._queue.get_nowait()
            self._queue.put_nowait(event)
            self.dropped += 1
            self.logger.warning("subscriber_queue_overflow", dropped_total=self.dropped)

    async def get(self) -> RealtimeEvent:
        """Next event. Raises StopAsyncIteration once the subscription is closed."""
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def drain(self) -> list[RealtimeEvent]:
        """Pop every event that is ready now, without waiting."""
        events: list[RealtimeEvent] = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                break
            events.append(item)
        return events

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> RealtimeEvent:
        return await self.get()

    def close(self) -> None:
        """Unregister and discard undelivered events. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._distributor._remove(self)

        while not self._queue.empty():
            self._queue.get_nowait()
        # Wake a consumer blocked in get().
        self._queue.put_nowait(_CLOSED)


class RealtimeDistributor:
    """Fans stored readings and alerts out to every interested subscription."""

    def __init__(self, queue_size: int = 256) -> None:
        if queue_size <= 0:
            raise ValueError("queue_size must be positive")
        self.queue_size = queue_size
        self._subscriptions: dict[str, Subscription] = {}
        self.logger = logger.bind(component="realtime_distributor")

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(
        self,
        topics: Iterable[Topic | str],
        patient_id: str | None = None,
        queue_size: int | None = None,
    ) -> Subscription:
        """Register a subscription. Unknown topic names raise ValueError."""
        wanted = frozenset(Topic(topic) for topic in topics)
        if not wanted:
            raise ValueError("a subscription needs at least one topic")

        subscription = Subscription(
            self, wanted, patient_id, queue_size or self.queue_size
        )
        self._subscriptions[subscription.id] = subscription
        self.logger.info(
            "subscriber_connected",
            subscription_id=subscription.id,
            topics=sorted(topic.value for topic in wanted),
            patient_id=patient_id,
            subscribers=self.subscriber_count,
        )
        return subscription

    @asynccontextmanager
    async def subscription(
        self,
        topics: Iterable[Topic | str],
        patient_id: str | None = None,
    ) -> AsyncIterator[Subscription]:
        """Subscription that is closed on exit, including on cancellation."""
        subscription = self.subscribe(topics, patient_id)
        try:
            yield subscription
        finally:
            subscription.close()

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.close()

    def _remove(self, subscription: Subscription) -> None:
        if self._subscriptions.pop(subscription.id, None) is not None:
            self.logger.info(
                "subscriber_disconnected",
                subscription_id=subscription.id,
                dropped_events=subscription.dropped,
                subscribers=self.subscriber_count,
            )

    def publish(self, event: RealtimeEvent) -> int:
        """Offer ``event`` to every interested subscription. Returns how many were offered."""
        recipients = [sub for sub in list(self._subscriptions.values()) if sub.wants(event)]
        for subscription in recipients:
            subscription.offer(event)

        self.logger.debug(
            "event_published",
            event_type=event.type.value,
            topic=event.topic.value,
            recipients=len(recipients),
        )
        return len(recipients)

    def stats(self) -> list[dict[str, Any]]:
        """Per-subscription diagnostics."""
        return [
            {
                "subscription_id": sub.id,
                "topics": sorted(topic.value for topic in sub.topics),
                "patient_id": sub.patient_id,
                "pending": sub.pending,
                "dropped": sub.dropped,
            }
            for sub in self._subscriptions.values()
        ]
