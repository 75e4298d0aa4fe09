"""In-process publish/subscribe for pipeline events."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

logger = logging.getLogger(__name__)


class EventBus:
    """Fan-out of event dicts to per-channel subscriber queues.

    One bus is created per application and handed to the components that
    publish; channels are project ids.  Slow subscribers never block
    publishers: when a queue is full the event is dropped for that
    subscriber only.
    """

    def __init__(self, max_queue_size: int = 1000) -> None:
        self._max_queue_size = max_queue_size
        self._subscribers: dict[str, list[asyncio.Queue]] = {}

    def subscribe(self, channel: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        self._subscribers.setdefault(channel, []).append(queue)
        return queue

    def unsubscribe(self, channel: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(channel, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(channel, None)

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, []))

    async def publish(self, channel: str, event_type: str, **data: Any) -> None:
        event = {"type": event_type, "channel": channel, "timestamp": time.time(), **data}
        for queue in list(self._subscribers.get(channel, [])):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Dropping %s event for a slow subscriber on %s",
                               event_type, channel)
