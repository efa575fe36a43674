"""Payment gateway webhook processing.

Handles incoming gateway webhooks with:
- HMAC signature verification of the raw body
- Event deduplication by event id
- Funnelling captured payments into the same verify/create pair the
  client redirect uses, so whichever path arrives second is a no-op
"""

import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

import structlog

from storefront.application.order_service import OrderOrchestrator
from storefront.domain.base import utcnow
from storefront.domain.exceptions import DomainError
from storefront.infrastructure.config import settings
from storefront.infrastructure.payment_gateway import PaymentGatewayAdapter

logger = structlog.get_logger()


class WebhookEventType(str, Enum):
    """Types of webhook events from the payment gateway."""

    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_FAILED = "payment.failed"


class EventStatus(str, Enum):
    """Status of a webhook event in the event log."""

    PROCESSING = "processing"
    PROCESSED = "processed"
    IGNORED = "ignored"
    FAILED = "failed"
    DUPLICATE = "duplicate"


@dataclass
class WebhookEvent:
    """A webhook event from the payment gateway.

    Attributes:
        event_id: Unique event identifier.
        event_type: Event type string (unknown types are ignored).
        created_at: When the gateway emitted the event.
        data: Event-specific data (the payment callback fields).
    """

    event_id: str
    event_type: str
    created_at: datetime
    data: dict[str, Any]

    def compute_payload_hash(self) -> str:
        """Compute SHA-256 hash of the payload for the event log."""
        payload = json.dumps(
            {"event_id": self.event_id, "event_type": self.event_type, "data": self.data},
            sort_keys=True,
        )
        return hashlib.sha256(payload.encode()).hexdigest()


@dataclass
class WebhookResult:
    """Result of webhook processing.

    Attributes:
        success: Whether processing succeeded.
        event_id: The event ID.
        status: Final event status.
        message: Status message.
        duplicate: Whether this was a duplicate event.
        order_id: Order created or found for a captured payment.
    """

    success: bool
    event_id: str
    status: EventStatus
    message: str
    duplicate: bool = False
    order_id: str | None = None
    error_code: str | None = None


class WebhookSignatureVerifier:
    """Verifies HMAC-SHA256 signatures on webhook bodies."""

    def __init__(self, secret: str | None = None) -> None:
        """Initialize verifier.

        Args:
            secret: HMAC secret for signature verification.
        """
        self.secret = secret or settings.webhook_secret

    def sign(self, payload: str) -> str:
        """Compute the signature header value for a payload."""
        digest = hmac.new(self.secret.encode(), payload.encode(), hashlib.sha256).hexdigest()
        return f"sha256={digest}"

    def verify(self, payload: str, signature: str | None) -> bool:
        """Verify the HMAC signature of a webhook payload.

        Args:
            payload: Raw JSON body.
            signature: Signature header value (format: sha256=<hex>).

        Returns:
            True if signature is valid.
        """
        if not signature:
            logger.warning("Missing webhook signature")
            return False

        parts = signature.split("=", 1)
        if len(parts) != 2 or parts[0] != "sha256":
            logger.warning("Invalid webhook signature format")
            return False

        computed = self.sign(payload).split("=", 1)[1]
        if not hmac.compare_digest(computed.encode(), parts[1].encode()):
            logger.warning("Webhook signature mismatch")
            return False
        return True


class InMemoryEventLog:
    """In-memory webhook event log used for deduplication.

    Entries older than the retention window are dropped; the gateway
    stops redelivering long before that.
    """

    def __init__(self, retention_seconds: int = 259200) -> None:
        self.retention = timedelta(seconds=retention_seconds)
        self._events: dict[str, dict[str, Any]] = {}

    def __len__(self) -> int:
        return len(self._events)

    def _prune(self) -> None:
        cutoff = utcnow() - self.retention
        for event_id, entry in list(self._events.items()):
            if entry["received_at"] < cutoff:
                del self._events[event_id]

    async def store(self, event: WebhookEvent, status: EventStatus) -> None:
        self._prune()
        self._events[event.event_id] = {
            "event_id": event.event_id,
            "event_type": event.event_type,
            "payload_hash": event.compute_payload_hash(),
            "received_at": utcnow(),
            "processed_at": None,
            "status": status.value,
            "error_message": None,
            "order_id": None,
        }

    async def get(self, event_id: str) -> dict[str, Any] | None:
        return self._events.get(event_id)

    async def update_status(
        self,
        event_id: str,
        status: EventStatus,
        error_message: str | None = None,
        order_id: str | None = None,
    ) -> None:
        entry = self._events.get(event_id)
        if entry is None:
            return
        entry["status"] = status.value
        if status in (EventStatus.PROCESSED, EventStatus.IGNORED):
            entry["processed_at"] = utcnow()
        if error_message:
            entry["error_message"] = error_message
        if order_id:
            entry["order_id"] = order_id


class WebhookService:
    """Service for processing incoming payment webhooks."""

    def __init__(
        self,
        orchestrator: OrderOrchestrator,
        gateway: PaymentGatewayAdapter,
        event_log: InMemoryEventLog | None = None,
        signature_verifier: WebhookSignatureVerifier | None = None,
    ) -> None:
        """Initialize webhook service.

        Args:
            orchestrator: Order orchestrator for captured payments.
            gateway: Adapter translating callback data into proofs.
            event_log: Event log for deduplication.
            signature_verifier: Webhook body signature verifier.
        """
        self.orchestrator = orchestrator
        self.gateway = gateway
        self.event_log = event_log if event_log is not None else InMemoryEventLog()
        self.signature_verifier = signature_verifier or WebhookSignatureVerifier()

    def verify_signature(self, payload: str, signature: str | None) -> bool:
        return self.signature_verifier.verify(payload, signature)

    async def process_event(self, event: WebhookEvent) -> WebhookResult:
        """Process a webhook event exactly once.

        Args:
            event: The webhook event to process.

        Returns:
            Processing result.
        """
        logger.info("Processing webhook event", event_id=event.event_id, event_type=event.event_type)

        # Failed events may be redelivered and are processed again
        entry = await self.event_log.get(event.event_id)
        if entry is not None and entry["status"] != EventStatus.FAILED.value:
            logger.info("Duplicate webhook event ignored", event_id=event.event_id)
            return WebhookResult(
                success=True,
                event_id=event.event_id,
                status=EventStatus.DUPLICATE,
                message="Event already processed",
                duplicate=True,
                order_id=entry.get("order_id"),
            )

        await self.event_log.store(event, EventStatus.PROCESSING)

        try:
            if event.event_type == WebhookEventType.PAYMENT_CAPTURED.value:
                return await self._handle_captured(event)
            if event.event_type == WebhookEventType.PAYMENT_FAILED.value:
                return await self._handle_failed(event)
        except Exception as e:
            # Leave the event redeliverable
            await self.event_log.update_status(event.event_id, EventStatus.FAILED, error_message=str(e))
            logger.exception("Webhook event processing crashed", event_id=event.event_id)
            raise

        logger.info("Unhandled webhook event type", event_id=event.event_id, event_type=event.event_type)
        await self.event_log.update_status(event.event_id, EventStatus.IGNORED)
        return WebhookResult(
            success=True,
            event_id=event.event_id,
            status=EventStatus.IGNORED,
            message=f"Event type {event.event_type} ignored",
        )

    async def _handle_captured(self, event: WebhookEvent) -> WebhookResult:
        try:
            proof = self.gateway.map_callback(event.data)
        except DomainError as e:
            return await self._fail(event, e.error_code, e.message)

        # The body is HMAC-verified, so its amount is authoritative
        result = await self.orchestrator.confirm_payment(None, proof, amount_signed=True)
        if not result.success or result.order is None:
            error_code = result.error_code or "UNKNOWN"
            return await self._fail(event, error_code, result.message or "Order creation failed")

        order_id = str(result.order.id)
        await self.event_log.update_status(event.event_id, EventStatus.PROCESSED, order_id=order_id)
        logger.info(
            "Webhook payment captured",
            event_id=event.event_id,
            order_id=order_id,
            created=result.created,
        )
        return WebhookResult(
            success=True,
            event_id=event.event_id,
            status=EventStatus.PROCESSED,
            message="Order created" if result.created else "Order already exists",
            order_id=order_id,
        )

    async def _handle_failed(self, event: WebhookEvent) -> WebhookResult:
        intent_id = str(
            event.data.get("razorpay_order_id")
            or event.data.get("providerOrderId")
            or event.data.get("order_id")
            or ""
        )
        marked = self.orchestrator.mark_attempt_failed(intent_id, reason=event.data.get("error_description"))
        await self.event_log.update_status(event.event_id, EventStatus.PROCESSED)
        return WebhookResult(
            success=True,
            event_id=event.event_id,
            status=EventStatus.PROCESSED,
            message="Attempt marked failed" if marked else "No open attempt for intent",
        )

    async def _fail(self, event: WebhookEvent, error_code: str, message: str) -> WebhookResult:
        logger.error(
            "Failed to process webhook event",
            event_id=event.event_id,
            event_type=event.event_type,
            error_code=error_code,
        )
        await self.event_log.update_status(event.event_id, EventStatus.FAILED, error_message=message)
        return WebhookResult(
            success=False,
            event_id=event.event_id,
            status=EventStatus.FAILED,
            message=message,
            error_code=error_code,
        )
