"""
Event bus for UI-facing notifications, backed by Redis pub/sub.

Sessions publish ``batch.*`` channels here; any front end (or a test) can
subscribe. Notifications are informational: the batching core never waits on
a consumer and never fails because a publish failed.
"""
import asyncio
import fnmatch
import json
from dataclasses import asdict, is_dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Coroutine, Optional

import redis.asyncio as redis
import structlog

log = structlog.get_logger()


class EventEncoder(json.JSONEncoder):
    """JSON encoder for event payloads (Decimal, datetime, Enum, dataclass)."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if is_dataclass(obj) and not isinstance(obj, type):
            return asdict(obj)
        return super().default(obj)


def encode_event(event: dict[str, Any] | Any) -> str:
    """Serialize an event payload (dict, dataclass, or object with to_dict)."""
    if hasattr(event, "to_dict"):
        event = event.to_dict()
    elif is_dataclass(event) and not isinstance(event, type):
        event = asdict(event)
    return json.dumps(event, cls=EventEncoder)


def decode_event(data: str) -> dict[str, Any]:
    """Decode JSON event data."""
    return json.loads(data)


EventHandler = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]


class EventBus:
    """Redis-backed event bus.

    Usage:
        bus = EventBus(redis_url="redis://localhost:6379")
        await bus.connect()

        async def handler(event):
            print(event["batch_id"], event["outcome"])

        await bus.subscribe("batch.*", handler)
        await bus.publish("batch.resolved", {"batch_id": "b-1", "outcome": "confirmed"})
    """

    def __init__(self, redis_url: str = "redis://localhost:6379") -> None:
        self._redis_url = redis_url
        self._redis: Optional[redis.Redis] = None
        self._pubsub: Optional[redis.client.PubSub] = None
        self._handlers: dict[str, list[EventHandler]] = {}
        self._subscriber_task: Optional[asyncio.Task] = None
        self._running = False
        self._log = log.bind(component="event_bus")

    async def connect(self) -> None:
        """Establish connection to Redis and start the subscriber loop."""
        self._redis = redis.from_url(
            self._redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        await self._redis.ping()
        self._pubsub = self._redis.pubsub()
        self._running = True
        self._subscriber_task = asyncio.create_task(self._subscriber_loop())
        self._log.info("event_bus_connected", redis_url=self._redis_url)

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        self._running = False
        if self._subscriber_task:
            self._subscriber_task.cancel()
            try:
                await self._subscriber_task
            except asyncio.CancelledError:
                pass
        if self._pubsub:
            await self._pubsub.close()
        if self._redis:
            await self._redis.close()
        self._redis = None
        self._pubsub = None

    @property
    def is_connected(self) -> bool:
        """Check if connected to Redis."""
        return self._redis is not None and self._running

    async def publish(self, channel: str, event: dict[str, Any] | Any) -> None:
        """Publish event to channel.

        Args:
            channel: Channel name (e.g., "batch.resolved")
            event: Event data (dict, dataclass, or payload with to_dict())
        """
        if not self._redis:
            raise RuntimeError("EventBus not connected")

        await self._redis.publish(channel, encode_event(event))

    async def subscribe(self, pattern: str, handler: EventHandler) -> None:
        """Subscribe to a channel or glob pattern like "batch.*"."""
        if not self._pubsub:
            raise RuntimeError("EventBus not connected")

        if pattern not in self._handlers:
            self._handlers[pattern] = []
            if "*" in pattern:
                await self._pubsub.psubscribe(pattern)
            else:
                await self._pubsub.subscribe(pattern)

        self._handlers[pattern].append(handler)

    async def _subscriber_loop(self) -> None:
        """Main loop for processing incoming messages."""
        if not self._pubsub:
            return

        try:
            async for message in self._pubsub.listen():
                if not self._running:
                    break

                if message["type"] not in ("message", "pmessage"):
                    continue

                channel = message.get("channel", "")
                try:
                    data = decode_event(message["data"])
                except json.JSONDecodeError:
                    self._log.warning("malformed_event_skipped", channel=channel)
                    continue

                await self._dispatch_event(channel, data)
        except asyncio.CancelledError:
            pass

    async def _dispatch_event(self, channel: str, data: dict[str, Any]) -> None:
        """Dispatch event to matching handlers."""
        for pattern, handlers in list(self._handlers.items()):
            if not fnmatch.fnmatchcase(channel, pattern):
                continue
            for handler in handlers:
                try:
                    await handler(data)
                except Exception as e:
                    # One failing subscriber must not starve the others
                    self._log.warning(
                        "event_handler_failed",
                        channel=channel,
                        error=str(e),
                    )
