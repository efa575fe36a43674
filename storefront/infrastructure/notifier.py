"""Fire-and-forget order notifications.

Domain events drained from committed orders are handed to a
``NotificationDispatcher``, which delivers them in background tasks.
Delivery failures are logged and never reach the request that caused
them.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog

from storefront.domain.base import DomainEvent
from storefront.infrastructure.config import Settings, settings

logger = structlog.get_logger()

# Template name per event type (confirmation, status update, cancellation)
_TEMPLATES = {
    "order.placed": "order_confirmation",
    "order.status_changed": "order_status_update",
    "order.cancelled": "order_cancellation",
}


class Notifier(ABC):
    """Delivers one notification message."""

    @abstractmethod
    async def send(self, message: dict[str, Any]) -> None:
        """Deliver a message. May raise; the dispatcher logs failures."""

    async def close(self) -> None:
        return None


class LoggingNotifier(Notifier):
    """Notifier that only logs what would be sent."""

    async def send(self, message: dict[str, Any]) -> None:
        logger.info(
            "Notification sent",
            template=message["template"],
            order_number=message["payload"].get("order_number"),
        )


class HttpNotifier(Notifier):
    """Notifier that POSTs messages to an email/notification service."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def send(self, message: dict[str, Any]) -> None:
        response = await self._client.post(self.url, json=message)
        response.raise_for_status()

    async def close(self) -> None:
        await self._client.aclose()


def build_message(event: DomainEvent) -> dict[str, Any]:
    """Turn a domain event into a notification message."""
    data = event.to_dict()
    return {
        "template": _TEMPLATES.get(event.event_type, event.event_type),
        "recipient": data["payload"].get("recipient_email"),
        "event_id": data["event_id"],
        "occurred_at": data["occurred_at"],
        "payload": data["payload"],
    }


class NotificationDispatcher:
    """Schedules notification delivery without awaiting it."""

    def __init__(self, notifier: Notifier) -> None:
        self.notifier = notifier
        self._tasks: set[asyncio.Task[None]] = set()

    def dispatch(self, events: list[DomainEvent]) -> None:
        """Schedule delivery of each event's notification."""
        for event in events:
            task = asyncio.create_task(self._deliver(event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _deliver(self, event: DomainEvent) -> None:
        try:
            await self.notifier.send(build_message(event))
        except Exception as e:
            logger.error(
                "Notification delivery failed",
                event_type=event.event_type,
                aggregate_id=event.aggregate_id,
                error=str(e),
            )

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def close(self) -> None:
        await self.drain()
        await self.notifier.close()


def create_notifier(config: Settings | None = None) -> Notifier:
    """Build the configured notifier."""
    config = config or settings
    if config.notifier_url:
        return HttpNotifier(config.notifier_url)
    return LoggingNotifier()
