"""
Event bus for dispatcher event distribution.

This module provides the EventBus abstraction and an in-memory
implementation that external observers subscribe to.
"""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator

from .types import DispatchEvent, DispatchEventType


@dataclass
class EventSubscription:
    """Subscription to events from the event bus."""
    subscription_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    job_id: str | None = None
    event_types: set[DispatchEventType] | None = None  # None = all types
    lane_index: int | None = None

    def matches(self, event: DispatchEvent) -> bool:
        """Check if an event matches this subscription."""
        if self.job_id and event.job_id != self.job_id:
            return False
        if self.lane_index is not None and event.lane_index != self.lane_index:
            return False
        if self.event_types and event.type not in self.event_types:
            return False
        return True


class EventBus(ABC):
    """Abstract event bus for dispatcher events.

    ``publish_nowait`` must not suspend: lanes emit from inside their
    admission and timer callbacks.
    """

    @abstractmethod
    def publish_nowait(self, event: DispatchEvent) -> None:
        """Deliver an event to all matching subscribers without awaiting."""
        ...

    async def publish(self, event: DispatchEvent) -> None:
        """Publish an event to all matching subscribers."""
        self.publish_nowait(event)

    @abstractmethod
    def subscribe(
        self,
        job_id: str | None = None,
        event_types: set[DispatchEventType] | None = None,
        lane_index: int | None = None,
    ) -> EventSubscription:
        """Create a subscription and return it."""
        ...

    @abstractmethod
    def events(
        self,
        subscription: EventSubscription,
    ) -> AsyncIterator[DispatchEvent]:
        """Iterate over events for a subscription."""
        ...

    @abstractmethod
    def unsubscribe(self, subscription: EventSubscription) -> None:
        """Remove a subscription."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the event bus and clean up resources."""
        ...


class InMemoryEventBus(EventBus):
    """In-memory event bus implementation.

    Uses an asyncio.Queue per subscription. Suitable for single-process
    deployments and testing.

    Features:
    - Bounded buffers to prevent memory overflow
    - Multiple subscribers per job
    """

    def __init__(
        self,
        max_queue_size: int = 1000,
        drop_policy: str = "oldest",  # "oldest" or "newest"
    ):
        if drop_policy not in ("oldest", "newest"):
            raise ValueError(f"Invalid drop policy: {drop_policy!r}")
        self._queues: dict[str, asyncio.Queue[DispatchEvent | None]] = {}
        self._subscriptions: dict[str, EventSubscription] = {}
        self._max_queue_size = max_queue_size
        self._drop_policy = drop_policy
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish_nowait(self, event: DispatchEvent) -> None:
        if self._closed:
            return

        for sub_id, subscription in list(self._subscriptions.items()):
            if not subscription.matches(event):
                continue
            queue = self._queues.get(sub_id)
            if queue is None:
                continue
            if queue.full():
                if self._drop_policy == "newest":
                    continue
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
            queue.put_nowait(event)

    def subscribe(
        self,
        job_id: str | None = None,
        event_types: set[DispatchEventType] | None = None,
        lane_index: int | None = None,
    ) -> EventSubscription:
        subscription = EventSubscription(
            job_id=job_id,
            event_types=set(event_types) if event_types else None,
            lane_index=lane_index,
        )
        self._subscriptions[subscription.subscription_id] = subscription
        self._queues[subscription.subscription_id] = asyncio.Queue(
            maxsize=self._max_queue_size
        )
        return subscription

    async def events(
        self,
        subscription: EventSubscription,
    ) -> AsyncIterator[DispatchEvent]:
        """Iterate over events for a subscription.

        Yields events until the subscription is closed (receives None).
        """
        queue = self._queues.get(subscription.subscription_id)
        if not queue:
            return

        while True:
            event = await queue.get()
            if event is None:  # Sentinel for close
                break
            yield event

    def unsubscribe(self, subscription: EventSubscription) -> None:
        sub_id = subscription.subscription_id
        self._subscriptions.pop(sub_id, None)
        queue = self._queues.pop(sub_id, None)
        if queue is not None:
            # Unblock any waiting consumer
            _put_sentinel(queue)

    async def close(self) -> None:
        self._closed = True
        for queue in self._queues.values():
            _put_sentinel(queue)
        self._queues.clear()
        self._subscriptions.clear()

    async def wait_for_event(
        self,
        subscription: EventSubscription,
        timeout: float | None = None,
    ) -> DispatchEvent | None:
        """Wait for a single event with optional timeout."""
        queue = self._queues.get(subscription.subscription_id)
        if not queue:
            return None

        try:
            if timeout:
                return await asyncio.wait_for(queue.get(), timeout=timeout)
            return await queue.get()
        except asyncio.TimeoutError:
            return None


def _put_sentinel(queue: asyncio.Queue[DispatchEvent | None]) -> None:
    if queue.full():
        try:
            queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
    queue.put_nowait(None)


__all__ = [
    "EventBus",
    "InMemoryEventBus",
    "EventSubscription",
]
