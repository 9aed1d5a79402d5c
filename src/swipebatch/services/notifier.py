"""UI notification publishing.

Notifications are informational: a missing or failing event bus is logged
and never reaches the batching core.
"""
import asyncio
from typing import Any, Optional

import structlog

from swipebatch.core.events import EventBus

log = structlog.get_logger()


class Notifier:
    """Publishes typed event payloads to the event bus, if there is one."""

    def __init__(self, event_bus: Optional[EventBus] = None):
        self._event_bus = event_bus
        self._tasks: set[asyncio.Task] = set()
        self._log = log.bind(component="notifier")

    async def publish(self, channel: str, event: Any) -> None:
        payload = event.to_dict() if hasattr(event, "to_dict") else event
        if self._event_bus is None:
            self._log.debug("notification", channel=channel, **payload)
            return
        try:
            await self._event_bus.publish(channel, payload)
        except Exception as e:
            self._log.warning("notification_publish_failed", channel=channel, error=str(e))

    def publish_soon(self, channel: str, event: Any) -> None:
        """Schedule a publish from synchronous code."""
        task = asyncio.get_running_loop().create_task(self.publish(channel, event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for scheduled publishes to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
