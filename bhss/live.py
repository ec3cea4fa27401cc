"""
Live feed of saved records for connected admin dashboards.

Supports an in-process broadcaster for tests/local runs and a Redis pub/sub
implementation so every worker process sees every event.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Protocol

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class LiveFeed(Protocol):
    """Broadcast channel between request handlers and websocket listeners."""

    async def publish(self, event: str, data: Any) -> None:
        ...

    def subscribe(self) -> Any:
        """Async context manager yielding an async iterator of messages."""
        ...


@dataclass
class InMemoryLiveFeed:
    """
    One bounded queue per listener. Publishing never waits: a listener whose
    queue is full misses the message.
    """

    max_pending: int = 100
    listeners: dict = field(default_factory=dict)

    @property
    def listener_count(self) -> int:
        return len(self.listeners)

    async def publish(self, event: str, data: Any) -> None:
        message = {"event": event, "data": data}
        for queue, loop in list(self.listeners.items()):
            # Listeners may live on another event loop (thread).
            loop.call_soon_threadsafe(self._offer, queue, event, message)

    @staticmethod
    def _offer(queue: asyncio.Queue, event: str, message: dict) -> None:
        try:
            queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Live listener is behind; dropped %s", event)

    @asynccontextmanager
    async def subscribe(self):
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_pending)
        self.listeners[queue] = asyncio.get_running_loop()
        try:
            yield self._drain(queue)
        finally:
            self.listeners.pop(queue, None)

    @staticmethod
    async def _drain(queue: asyncio.Queue) -> AsyncIterator[dict]:
        while True:
            yield await queue.get()


@dataclass
class RedisLiveFeed:
    """Redis pub/sub on a single channel."""

    url: str
    channel: str = "bhss:live"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    async def publish(self, event: str, data: Any) -> None:
        await self.client.publish(
            self.channel, json.dumps({"event": event, "data": data}, default=str)
        )

    @asynccontextmanager
    async def subscribe(self):
        pubsub = self.client.pubsub(ignore_subscribe_messages=True)
        await pubsub.subscribe(self.channel)
        try:
            yield self._messages(pubsub)
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()

    async def _messages(self, pubsub) -> AsyncIterator[dict]:
        async for raw in pubsub.listen():
            if raw.get("type") != "message":
                continue
            try:
                yield json.loads(raw["data"])
            except ValueError:
                logger.warning("Ignoring malformed live message on %s", self.channel)
