"""Shared fixtures for API tests."""

from collections.abc import Iterator
from typing import Any

import pytest
from fastapi.testclient import TestClient

from storefront.dependencies import Container, get_container, reset_container
from storefront.infrastructure.config import settings
from storefront.main import app
from tests.factories import ADDRESS_JSON


@pytest.fixture
def client() -> Iterator[TestClient]:
    """Create test client without authentication."""
    reset_container()
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_client() -> Iterator[TestClient]:
    """Create test client with the service key and a customer identity.

    Entering the client runs the app lifespan, which seeds the demo
    catalog into a fresh in-memory store.
    """
    reset_container()
    with TestClient(
        app,
        headers={
            "Authorization": f"Bearer {settings.service_api_key}",
            "X-User-Id": "user-1",
        },
    ) as test_client:
        yield test_client


@pytest.fixture
def container(auth_client: TestClient) -> Container:
    """The container the running app was built with."""
    return get_container()


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-User-Id": "admin-1", "X-User-Role": "admin"}


def proof_body(callback: dict[str, Any]) -> dict[str, Any]:
    """Client-side proof body from a gateway callback payload."""
    return {
        "providerOrderId": callback["razorpay_order_id"],
        "providerPaymentId": callback["razorpay_payment_id"],
        "signature": callback["razorpay_signature"],
        "amount": callback["amount"],
        "method": callback["method"],
    }


def open_payment(client: TestClient, headers: dict[str, str] | None = None, **body: Any) -> dict[str, Any]:
    """POST /orders/create-payment and return the response body."""
    response = client.post(
        "/orders/create-payment",
        json={"shippingAddress": ADDRESS_JSON, **body},
        headers=headers,
    )
    assert response.status_code == 200, response.json()
    return response.json()


def pay(client: TestClient, container: Container, headers: dict[str, str] | None = None, **body: Any) -> dict[str, Any]:
    """Open a payment intent and have the simulated customer pay it.

    Returns:
        The callback payload the gateway would hand back to the client.
    """
    created = open_payment(client, headers=headers, **body)
    return container.gateway.complete_payment(created["intent"]["intentId"])


def place(client: TestClient, container: Container, headers: dict[str, str] | None = None, **body: Any) -> dict[str, Any]:
    """Run a full payment and commit the order; returns the order body."""
    callback = pay(client, container, headers=headers, **body)
    response = client.post(
        "/orders",
        json={"intentId": callback["razorpay_order_id"], "payment": proof_body(callback)},
        headers=headers,
    )
    assert response.status_code == 201, response.json()
    return response.json()
