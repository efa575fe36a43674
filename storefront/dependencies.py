"""Service wiring.

Builds the store, gateway, notifier and application services once per
process from settings and hands them to the API layer.
"""

from dataclasses import dataclass

import structlog

from storefront.application.checkout_session import CheckoutSessionController
from storefront.application.order_service import CheckoutAttemptStore, OrderOrchestrator
from storefront.application.payment_verifier import PaymentVerifier
from storefront.application.snapshot_service import CartSnapshotService
from storefront.application.webhook_service import (
    InMemoryEventLog,
    WebhookService,
    WebhookSignatureVerifier,
)
from storefront.infrastructure.config import Settings, settings
from storefront.infrastructure.memory_store import InMemoryStore
from storefront.infrastructure.notifier import NotificationDispatcher, create_notifier
from storefront.infrastructure.payment_gateway import PaymentGatewayAdapter, create_gateway
from storefront.infrastructure.sql_store import SqlAlchemyStore

logger = structlog.get_logger()


@dataclass
class Container:
    """Process-wide collaborators."""

    config: Settings
    store: InMemoryStore | SqlAlchemyStore
    gateway: PaymentGatewayAdapter
    verifier: PaymentVerifier
    dispatcher: NotificationDispatcher
    snapshots: CartSnapshotService
    orchestrator: OrderOrchestrator
    sessions: CheckoutSessionController
    webhooks: WebhookService

    async def close(self) -> None:
        await self.dispatcher.close()
        await self.gateway.close()
        if isinstance(self.store, SqlAlchemyStore):
            await self.store.dispose()


def build_container(config: Settings | None = None) -> Container:
    """Assemble every collaborator from settings.

    Args:
        config: Settings to build from (defaults to global).

    Returns:
        A fully wired container.
    """
    config = config or settings

    if config.storage_backend == "sql":
        store: InMemoryStore | SqlAlchemyStore = SqlAlchemyStore(config.database_url, echo=config.debug)
    elif config.storage_backend == "memory":
        store = InMemoryStore()
    else:
        raise ValueError(f"Unknown storage backend: {config.storage_backend}")

    gateway = create_gateway(config)
    verifier = PaymentVerifier(config.gateway_key_secret)
    dispatcher = NotificationDispatcher(create_notifier(config))
    snapshots = CartSnapshotService(catalog=store, carts=store, currency=config.currency)
    orchestrator = OrderOrchestrator(
        orders=store,
        carts=store,
        snapshots=snapshots,
        gateway=gateway,
        verifier=verifier,
        dispatcher=dispatcher,
        attempts=CheckoutAttemptStore(
            ttl_seconds=config.checkout_attempt_ttl_seconds,
            max_unpaid_per_user=config.max_unpaid_attempts_per_user,
        ),
        max_commit_retries=config.max_commit_retries,
    )
    sessions = CheckoutSessionController(orchestrator, ttl_seconds=config.checkout_session_ttl_seconds)
    webhooks = WebhookService(
        orchestrator=orchestrator,
        gateway=gateway,
        event_log=InMemoryEventLog(retention_seconds=config.webhook_event_retention_seconds),
        signature_verifier=WebhookSignatureVerifier(config.webhook_secret),
    )

    logger.info(
        "Services wired",
        storage_backend=config.storage_backend,
        payment_gateway=config.payment_gateway,
    )
    return Container(
        config=config,
        store=store,
        gateway=gateway,
        verifier=verifier,
        dispatcher=dispatcher,
        snapshots=snapshots,
        orchestrator=orchestrator,
        sessions=sessions,
        webhooks=webhooks,
    )


# Global container instance
_container: Container | None = None


def get_container() -> Container:
    """Get or create the global container."""
    global _container
    if _container is None:
        _container = build_container()
    return _container


def reset_container() -> None:
    """Drop the global container (for testing)."""
    global _container
    _container = None
