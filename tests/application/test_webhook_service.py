"""Tests for WebhookService."""

from dataclasses import replace
from datetime import timedelta

import pytest

from storefront.application.order_service import OrderOrchestrator
from storefront.application.webhook_service import (
    EventStatus,
    InMemoryEventLog,
    WebhookEvent,
    WebhookService,
    WebhookSignatureVerifier,
)
from storefront.domain.base import utcnow
from storefront.domain.value_objects import CartLine, ShippingAddress
from storefront.infrastructure.memory_store import InMemoryStore
from storefront.infrastructure.payment_gateway import SimulatedGateway
from tests.factories import open_and_pay, tamper


@pytest.fixture
def service(orchestrator: OrderOrchestrator, gateway: SimulatedGateway) -> WebhookService:
    return WebhookService(
        orchestrator=orchestrator,
        gateway=gateway,
        signature_verifier=WebhookSignatureVerifier("test-webhook-secret"),
    )


def captured(event_id: str, data: dict) -> WebhookEvent:
    return WebhookEvent(event_id=event_id, event_type="payment.captured", created_at=utcnow(), data=data)


class TestWebhookSignature:
    """Tests for webhook body signatures."""

    def test_valid_signature(self) -> None:
        verifier = WebhookSignatureVerifier("test-webhook-secret")
        body = '{"event_id": "evt_1"}'
        assert verifier.verify(body, verifier.sign(body))

    def test_tampered_signature(self) -> None:
        verifier = WebhookSignatureVerifier("test-webhook-secret")
        body = '{"event_id": "evt_1"}'
        assert not verifier.verify(body, tamper(verifier.sign(body)))

    def test_tampered_body(self) -> None:
        verifier = WebhookSignatureVerifier("test-webhook-secret")
        signature = verifier.sign('{"event_id": "evt_1"}')
        assert not verifier.verify('{"event_id": "evt_2"}', signature)

    @pytest.mark.parametrize("header", [None, "", "deadbeef", "md5=deadbeef"])
    def test_malformed_header(self, header) -> None:
        verifier = WebhookSignatureVerifier("test-webhook-secret")
        assert not verifier.verify("{}", header)


class TestWebhookProcessing:
    """Tests for processing gateway events."""

    @pytest.mark.asyncio
    async def test_captured_payment_creates_order(
        self,
        service: WebhookService,
        orchestrator: OrderOrchestrator,
        gateway: SimulatedGateway,
        store: InMemoryStore,
        address: ShippingAddress,
    ) -> None:
        store.set_cart("user-1", [CartLine("prod-a", 2)])
        attempt, _ = await open_and_pay(orchestrator, gateway, "user-1", address)
        data = gateway.complete_payment(attempt.intent.intent_id)

        result = await service.process_event(captured("evt_1", data))

        assert result.success
        assert result.status == EventStatus.PROCESSED
        assert result.message == "Order created"
        order = await orchestrator.find_order_for_intent(attempt.intent.intent_id)
        assert str(order.id) == result.order_id
        entry = await service.event_log.get("evt_1")
        assert entry["status"] == "processed"
        assert entry["order_id"] == result.order_id

    @pytest.mark.asyncio
    async def test_redelivery_is_duplicate(
        self,
        service: WebhookService,
        orchestrator: OrderOrchestrator,
        gateway: SimulatedGateway,
        store: InMemoryStore,
        address: ShippingAddress,
    ) -> None:
        store.set_cart("user-1", [CartLine("prod-a", 1)])
        attempt, _ = await open_and_pay(orchestrator, gateway, "user-1", address)
        event = captured("evt_1", gateway.complete_payment(attempt.intent.intent_id))

        first = await service.process_event(event)
        second = await service.process_event(event)

        assert second.duplicate
        assert second.status == EventStatus.DUPLICATE
        assert second.order_id == first.order_id
        assert store.order_count() == 1

    @pytest.mark.asyncio
    async def test_webhook_after_client_confirmation(
        self,
        service: WebhookService,
        orchestrator: OrderOrchestrator,
        gateway: SimulatedGateway,
        store: InMemoryStore,
        address: ShippingAddress,
    ) -> None:
        store.set_cart("user-1", [CartLine("prod-a", 1)])
        attempt, proof = await open_and_pay(orchestrator, gateway, "user-1", address)
        client = await orchestrator.confirm_payment("user-1", proof)
        data = {
            "razorpay_order_id": proof.provider_order_id,
            "razorpay_payment_id": proof.provider_payment_id,
            "razorpay_signature": proof.signature,
            "amount": proof.amount_minor,
        }

        result = await service.process_event(captured("evt_1", data))

        assert result.message == "Order already exists"
        assert result.order_id == str(client.order.id)
        assert store.order_count() == 1

    @pytest.mark.asyncio
    async def test_forged_capture_fails_and_can_be_retried(
        self,
        service: WebhookService,
        orchestrator: OrderOrchestrator,
        gateway: SimulatedGateway,
        store: InMemoryStore,
        address: ShippingAddress,
    ) -> None:
        store.set_cart("user-1", [CartLine("prod-a", 1)])
        attempt, _ = await open_and_pay(orchestrator, gateway, "user-1", address)
        data = gateway.complete_payment(attempt.intent.intent_id)
        forged = dict(data, razorpay_payment_id="pay_forged")

        result = await service.process_event(captured("evt_1", forged))

        assert not result.success
        assert result.status == EventStatus.FAILED
        assert result.error_code == "SIGNATURE_MISMATCH"
        assert store.order_count() == 0
        entry = await service.event_log.get("evt_1")
        assert entry["status"] == "failed"

    @pytest.mark.asyncio
    async def test_missing_callback_field_fails(self, service: WebhookService) -> None:
        result = await service.process_event(captured("evt_1", {"razorpay_order_id": "order_1"}))

        assert result.status == EventStatus.FAILED
        assert result.error_code == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_payment_failed_marks_attempt(
        self,
        service: WebhookService,
        orchestrator: OrderOrchestrator,
        gateway: SimulatedGateway,
        store: InMemoryStore,
        address: ShippingAddress,
    ) -> None:
        store.set_cart("user-1", [CartLine("prod-a", 1)])
        attempt, proof = await open_and_pay(orchestrator, gateway, "user-1", address)
        event = WebhookEvent(
            event_id="evt_fail",
            event_type="payment.failed",
            created_at=utcnow(),
            data={"razorpay_order_id": attempt.intent.intent_id, "error_description": "card declined"},
        )

        result = await service.process_event(event)
        late = await orchestrator.confirm_payment("user-1", proof)

        assert result.message == "Attempt marked failed"
        assert late.error_code == "PAYMENT_ATTEMPT_FAILED"

    @pytest.mark.asyncio
    async def test_unknown_event_type_ignored(self, service: WebhookService) -> None:
        event = WebhookEvent(event_id="evt_x", event_type="refund.processed", created_at=utcnow(), data={})

        result = await service.process_event(event)

        assert result.success
        assert result.status == EventStatus.IGNORED
        assert (await service.event_log.get("evt_x"))["processed_at"] is not None


class TestCapturedPaymentRecovery:
    """Tests for captures that follow a rejected or malformed delivery."""

    @pytest.mark.asyncio
    async def test_wrong_client_amount_does_not_block_capture(
        self,
        service: WebhookService,
        orchestrator: OrderOrchestrator,
        gateway: SimulatedGateway,
        store: InMemoryStore,
        address: ShippingAddress,
    ) -> None:
        store.set_cart("user-1", [CartLine("prod-a", 2)])
        attempt, proof = await open_and_pay(orchestrator, gateway, "user-1", address)
        data = {
            "razorpay_order_id": proof.provider_order_id,
            "razorpay_payment_id": proof.provider_payment_id,
            "razorpay_signature": proof.signature,
            "amount": attempt.intent.amount.amount_minor,
        }

        client = await orchestrator.verify_payment("user-1", replace(proof, amount_minor=10))
        result = await service.process_event(captured("evt_1", data))

        assert client.error_code == "AMOUNT_MISMATCH"
        assert result.status == EventStatus.PROCESSED
        assert result.message == "Order created"
        assert store.order_count() == 1

    @pytest.mark.asyncio
    async def test_signed_amount_mismatch_fails_event(
        self,
        service: WebhookService,
        orchestrator: OrderOrchestrator,
        gateway: SimulatedGateway,
        store: InMemoryStore,
        address: ShippingAddress,
    ) -> None:
        store.set_cart("user-1", [CartLine("prod-a", 1)])
        attempt, _ = await open_and_pay(orchestrator, gateway, "user-1", address)
        data = dict(gateway.complete_payment(attempt.intent.intent_id), amount=1)

        result = await service.process_event(captured("evt_1", data))

        assert result.error_code == "AMOUNT_MISMATCH"
        assert store.order_count() == 0

    @pytest.mark.asyncio
    async def test_malformed_amount_fails_and_redelivery_is_processed(
        self,
        service: WebhookService,
        orchestrator: OrderOrchestrator,
        gateway: SimulatedGateway,
        store: InMemoryStore,
        address: ShippingAddress,
    ) -> None:
        store.set_cart("user-1", [CartLine("prod-a", 1)])
        attempt, _ = await open_and_pay(orchestrator, gateway, "user-1", address)
        data = gateway.complete_payment(attempt.intent.intent_id)

        malformed = await service.process_event(captured("evt_1", dict(data, amount="10.5")))
        redelivered = await service.process_event(captured("evt_1", data))

        assert malformed.status == EventStatus.FAILED
        assert malformed.error_code == "VALIDATION_ERROR"
        assert redelivered.status == EventStatus.PROCESSED
        assert store.order_count() == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_leaves_event_redeliverable(
        self,
        service: WebhookService,
        orchestrator: OrderOrchestrator,
        gateway: SimulatedGateway,
        store: InMemoryStore,
        address: ShippingAddress,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        store.set_cart("user-1", [CartLine("prod-a", 1)])
        attempt, _ = await open_and_pay(orchestrator, gateway, "user-1", address)
        data = gateway.complete_payment(attempt.intent.intent_id)

        async def crash(*args, **kwargs):
            raise RuntimeError("database went away")

        with monkeypatch.context() as patched:
            patched.setattr(orchestrator, "confirm_payment", crash)
            with pytest.raises(RuntimeError):
                await service.process_event(captured("evt_1", data))

        assert (await service.event_log.get("evt_1"))["status"] == "failed"
        redelivered = await service.process_event(captured("evt_1", data))
        assert redelivered.status == EventStatus.PROCESSED
        assert store.order_count() == 1


class TestInMemoryEventLog:
    """Tests for event log retention."""

    @pytest.mark.asyncio
    async def test_old_entries_are_pruned(self) -> None:
        log = InMemoryEventLog(retention_seconds=60)
        await log.store(captured("evt_old", {}), EventStatus.PROCESSED)
        (await log.get("evt_old"))["received_at"] -= timedelta(minutes=5)

        await log.store(captured("evt_new", {}), EventStatus.PROCESSING)

        assert await log.get("evt_old") is None
        assert await log.get("evt_new") is not None
        assert len(log) == 1
