"""Shared fixtures for storefront tests."""

import pytest

from storefront.application.order_service import OrderOrchestrator
from storefront.application.payment_verifier import PaymentVerifier
from storefront.application.snapshot_service import CartSnapshotService
from storefront.domain.value_objects import ProductCategory, ShippingAddress, Size
from storefront.infrastructure.memory_store import InMemoryStore
from storefront.infrastructure.notifier import NotificationDispatcher
from storefront.infrastructure.payment_gateway import SimulatedGateway
from tests.factories import RecordingNotifier, make_address, make_product

GATEWAY_SECRET = "test-gateway-secret"


@pytest.fixture
def address() -> ShippingAddress:
    """A valid shipping address."""
    return make_address()


@pytest.fixture
def store() -> InMemoryStore:
    """In-memory store with a small catalog.

    - prod-a: unsized, 500 paise, 10 in stock
    - prod-x: unsized, 700 paise, last unit
    - shirt: sized S/M/L, 1000 paise, 5 in stock
    """
    store = InMemoryStore()
    store.add_product(make_product("prod-a", price=500, stock=10))
    store.add_product(make_product("prod-x", price=700, stock=1))
    store.add_product(
        make_product(
            "shirt",
            price=1000,
            stock=5,
            sizes=(Size.S, Size.M, Size.L),
            category=ProductCategory.MEN,
        )
    )
    return store


@pytest.fixture
def gateway() -> SimulatedGateway:
    return SimulatedGateway(key_secret=GATEWAY_SECRET)


@pytest.fixture
def verifier() -> PaymentVerifier:
    return PaymentVerifier(GATEWAY_SECRET)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def orchestrator(
    store: InMemoryStore,
    gateway: SimulatedGateway,
    verifier: PaymentVerifier,
    notifier: RecordingNotifier,
) -> OrderOrchestrator:
    """Orchestrator wired to the in-memory store and simulated gateway."""
    return OrderOrchestrator(
        orders=store,
        carts=store,
        snapshots=CartSnapshotService(catalog=store, carts=store, currency="INR"),
        gateway=gateway,
        verifier=verifier,
        dispatcher=NotificationDispatcher(notifier),
    )
