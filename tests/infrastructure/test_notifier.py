"""Tests for notification delivery."""

import json

import httpx
import pytest

from storefront.domain.events import OrderCancelled, OrderPlaced
from storefront.infrastructure.config import Settings
from storefront.infrastructure.notifier import (
    HttpNotifier,
    LoggingNotifier,
    NotificationDispatcher,
    Notifier,
    build_message,
    create_notifier,
)
from tests.factories import RecordingNotifier


class BrokenNotifier(Notifier):
    async def send(self, message: dict) -> None:
        raise RuntimeError("smtp down")


def placed() -> OrderPlaced:
    return OrderPlaced(
        aggregate_id="order-1",
        order_number="ORD123456",
        user_id="user-1",
        total_minor=1000,
        currency="INR",
        recipient_email="asha@example.com",
    )


class TestBuildMessage:
    """Tests for turning events into messages."""

    def test_confirmation(self) -> None:
        message = build_message(placed())
        assert message["template"] == "order_confirmation"
        assert message["recipient"] == "asha@example.com"
        assert message["payload"]["order_number"] == "ORD123456"

    def test_cancellation(self) -> None:
        message = build_message(OrderCancelled(order_number="ORD1", refund_minor=500, recipient_email="a@b.in"))
        assert message["template"] == "order_cancellation"
        assert message["payload"]["refund_minor"] == 500


class TestNotificationDispatcher:
    """Tests for background delivery."""

    @pytest.mark.asyncio
    async def test_delivers_in_background(self) -> None:
        notifier = RecordingNotifier()
        dispatcher = NotificationDispatcher(notifier)

        dispatcher.dispatch([placed()])
        await dispatcher.drain()

        assert len(notifier.sent) == 1

    @pytest.mark.asyncio
    async def test_logging_notifier_retains_nothing(self) -> None:
        notifier = LoggingNotifier()

        for _ in range(3):
            await notifier.send(build_message(placed()))

        assert vars(notifier) == {}

    @pytest.mark.asyncio
    async def test_failures_are_swallowed(self) -> None:
        dispatcher = NotificationDispatcher(BrokenNotifier())

        dispatcher.dispatch([placed()])
        await dispatcher.drain()

    @pytest.mark.asyncio
    async def test_http_notifier_posts_message(self) -> None:
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(json.loads(request.content))
            return httpx.Response(202)

        notifier = HttpNotifier("https://mail.test/send", transport=httpx.MockTransport(handler))
        dispatcher = NotificationDispatcher(notifier)

        dispatcher.dispatch([placed()])
        await dispatcher.close()

        assert received[0]["template"] == "order_confirmation"


class TestCreateNotifier:
    """Tests for the notifier factory."""

    def test_logging_without_url(self) -> None:
        assert isinstance(create_notifier(Settings(notifier_url=None)), LoggingNotifier)

    @pytest.mark.asyncio
    async def test_http_with_url(self) -> None:
        notifier = create_notifier(Settings(notifier_url="https://mail.test/send"))
        assert isinstance(notifier, HttpNotifier)
        await notifier.close()
