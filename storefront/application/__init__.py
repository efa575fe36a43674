"""Application layer module.

Contains application services (use cases) that orchestrate
domain logic and infrastructure.
"""

from storefront.application.checkout_session import CheckoutSessionController
from storefront.application.order_service import (
    CheckoutAttempt,
    CheckoutAttemptStore,
    OrderOrchestrator,
    idempotency_key,
)
from storefront.application.payment_verifier import PaymentVerifier
from storefront.application.snapshot_service import CartSnapshotService
from storefront.application.webhook_service import WebhookService

__all__ = [
    "CartSnapshotService",
    "CheckoutAttempt",
    "CheckoutAttemptStore",
    "CheckoutSessionController",
    "OrderOrchestrator",
    "PaymentVerifier",
    "WebhookService",
    "idempotency_key",
]
