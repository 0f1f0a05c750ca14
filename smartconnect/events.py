"""Subscribable stream of engine events.

The orchestrator and repository publish ``EngineEvent``s here and never call
consumers directly. Consumers either register a synchronous listener or
iterate a subscription:

    async with bus.subscribe() as events:
        async for event in events:
            ...

Each subscription owns a bounded queue; when a slow subscriber's queue is
full, its oldest event is dropped so publishers never block.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

from smartconnect.models.session import EngineEvent

logger = logging.getLogger(__name__)

Listener = Callable[[EngineEvent], None]


class Subscription:
    """Async iterator over the events published after it was opened."""

    def __init__(self, max_queue_size: int) -> None:
        self._queue: asyncio.Queue[EngineEvent] = asyncio.Queue(maxsize=max_queue_size)
        self.dropped = 0

    def _offer(self, event: EngineEvent) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(event)

    async def get(self) -> EngineEvent:
        return await self._queue.get()

    def __aiter__(self) -> AsyncIterator[EngineEvent]:
        return self

    async def __anext__(self) -> EngineEvent:
        return await self._queue.get()


class EventBus:
    """Fan-out of engine events to listeners and subscriptions."""

    def __init__(self, max_queue_size: int = 256) -> None:
        self._max_queue_size = max_queue_size
        self._listeners: list[Listener] = []
        self._subscriptions: list[Subscription] = []

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def open(self) -> Subscription:
        subscription = Subscription(self._max_queue_size)
        self._subscriptions.append(subscription)
        return subscription

    def close(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[Subscription]:
        subscription = self.open()
        try:
            yield subscription
        finally:
            self.close(subscription)

    def publish(self, event: EngineEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                logger.exception("Event listener failed for %s", event.kind.value)
        for subscription in list(self._subscriptions):
            subscription._offer(event)

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners) + len(self._subscriptions)
