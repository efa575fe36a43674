"""Payment gateway adapters.

Abstracts creation of a remote payment intent and the translation of
provider callbacks into ``PaymentProof`` values. Adapters never judge
authenticity; that is ``PaymentVerifier``'s job.
"""

import hashlib
import hmac
from abc import ABC, abstractmethod
from typing import Any
from uuid import uuid4

import httpx
import structlog

from storefront.domain.exceptions import (
    GatewayRequestError,
    GatewayUnavailableError,
    ValidationError,
)
from storefront.domain.value_objects import Money, PaymentIntent, PaymentProof
from storefront.infrastructure.config import Settings, settings

logger = structlog.get_logger()

# Accepted spellings for each proof field in provider callbacks
_CALLBACK_KEYS: dict[str, tuple[str, ...]] = {
    "provider_order_id": ("razorpay_order_id", "providerOrderId", "provider_order_id", "order_id"),
    "provider_payment_id": ("razorpay_payment_id", "providerPaymentId", "provider_payment_id", "payment_id"),
    "signature": ("razorpay_signature", "signature"),
}


def _parse_amount(value: Any) -> int | None:
    """Parse a callback amount in minor units; None when absent."""
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    raise ValidationError("Payment callback amount must be an integer in minor units", field="amount")


# ============================================================================
# Adapter Interface
# ============================================================================


class PaymentGatewayAdapter(ABC):
    """Interface every payment provider integration implements."""

    name: str = "gateway"

    @abstractmethod
    async def open_intent(self, amount: Money, receipt: str | None = None) -> PaymentIntent:
        """Open a provider-side intent for exactly ``amount``.

        Args:
            amount: Draft subtotal, in minor units. Never recomputed here.
            receipt: Merchant-side reference shown on the provider dashboard.

        Returns:
            The created PaymentIntent.

        Raises:
            GatewayUnavailableError: Provider unreachable or timed out.
            GatewayRequestError: Provider rejected the request.
        """

    def map_callback(self, raw: dict[str, Any]) -> PaymentProof:
        """Translate a provider callback payload into a PaymentProof.

        Pure data-shape translation. Accepts the provider's snake_case
        keys (``razorpay_order_id``) as well as camelCase client keys
        (``providerOrderId``).

        Raises:
            ValidationError: If a proof field is missing or the amount is
                not an integer.
        """
        values: dict[str, str] = {}
        for name, keys in _CALLBACK_KEYS.items():
            value = next((raw[k] for k in keys if raw.get(k)), None)
            if value is None:
                raise ValidationError(f"Payment callback is missing {name}", field=name)
            values[name] = str(value)

        return PaymentProof(
            provider_order_id=values["provider_order_id"],
            provider_payment_id=values["provider_payment_id"],
            signature=values["signature"],
            amount_minor=_parse_amount(raw.get("amount")),
            method=raw.get("method"),
        )

    async def close(self) -> None:
        """Release any network resources."""
        return None


# ============================================================================
# Razorpay HTTP Adapter
# ============================================================================


class RazorpayGateway(PaymentGatewayAdapter):
    """Razorpay Orders API adapter.

    Intents map onto Razorpay orders. Calls are bounded by a timeout; a
    timeout or connection failure becomes ``GatewayUnavailableError`` and
    is never retried here.
    """

    name = "razorpay"

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize adapter.

        Args:
            key_id: API key id.
            key_secret: API key secret.
            base_url: API base URL.
            timeout: Request timeout in seconds.
            transport: Optional transport override (tests).
        """
        self.key_id = key_id
        self._key_secret = key_secret
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                auth=(self.key_id, self._key_secret),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def open_intent(self, amount: Money, receipt: str | None = None) -> PaymentIntent:
        receipt = receipt or f"receipt_{uuid4().hex[:12]}"
        payload = {
            "amount": amount.amount_minor,
            "currency": amount.currency,
            "receipt": receipt,
        }
        client = await self._get_client()
        try:
            response = await client.post("/v1/orders", json=payload)
        except httpx.TimeoutException as e:
            logger.warning("Payment gateway timed out", gateway=self.name, error=str(e))
            raise GatewayUnavailableError("timeout", timed_out=True) from e
        except httpx.TransportError as e:
            logger.warning("Payment gateway unreachable", gateway=self.name, error=str(e))
            raise GatewayUnavailableError(str(e) or type(e).__name__) from e

        if response.status_code >= 500:
            logger.warning(
                "Payment gateway error response",
                gateway=self.name,
                status_code=response.status_code,
            )
            raise GatewayUnavailableError(f"status {response.status_code}")
        if response.status_code >= 400:
            raise GatewayRequestError(_error_description(response), status_code=response.status_code)

        try:
            data = response.json()
            intent_id = str(data["id"])
            echoed = int(data.get("amount", amount.amount_minor))
        except (ValueError, KeyError, TypeError) as e:
            raise GatewayRequestError("malformed response") from e

        if echoed != amount.amount_minor:
            raise GatewayRequestError("amount in response differs from request")

        intent = PaymentIntent(
            intent_id=intent_id,
            amount=amount,
            status=str(data.get("status", "created")),
            receipt=data.get("receipt", receipt),
        )
        logger.info(
            "Payment intent opened",
            gateway=self.name,
            intent_id=intent.intent_id,
            amount=amount.amount_minor,
            currency=amount.currency,
        )
        return intent


def _error_description(response: httpx.Response) -> str:
    try:
        return str(response.json()["error"]["description"])
    except (ValueError, KeyError, TypeError):
        return f"status {response.status_code}"


# ============================================================================
# Simulated Gateway
# ============================================================================


class SimulatedGateway(PaymentGatewayAdapter):
    """In-process gateway for development and tests.

    Issues Razorpay-shaped ids and can produce the signed callback a
    real checkout widget would hand back to the client.
    """

    name = "simulated"

    def __init__(self, key_secret: str) -> None:
        self._key_secret = key_secret
        self.available = True
        self.intents: dict[str, PaymentIntent] = {}

    async def open_intent(self, amount: Money, receipt: str | None = None) -> PaymentIntent:
        if not self.available:
            raise GatewayUnavailableError("simulated outage")
        intent = PaymentIntent(
            intent_id=f"order_{uuid4().hex[:14]}",
            amount=amount,
            receipt=receipt,
        )
        self.intents[intent.intent_id] = intent
        logger.info(
            "Payment intent opened",
            gateway=self.name,
            intent_id=intent.intent_id,
            amount=amount.amount_minor,
        )
        return intent

    def complete_payment(self, intent_id: str, payment_id: str | None = None) -> dict[str, Any]:
        """Simulate the customer paying an intent.

        Returns:
            The raw callback payload the provider would deliver.
        """
        intent = self.intents[intent_id]
        payment_id = payment_id or f"pay_{uuid4().hex[:14]}"
        signature = hmac.new(
            self._key_secret.encode(),
            f"{intent_id}|{payment_id}".encode(),
            hashlib.sha256,
        ).hexdigest()
        return {
            "razorpay_order_id": intent_id,
            "razorpay_payment_id": payment_id,
            "razorpay_signature": signature,
            "amount": intent.amount.amount_minor,
            "method": "card",
        }


# ============================================================================
# Factory
# ============================================================================


def create_gateway(config: Settings | None = None) -> PaymentGatewayAdapter:
    """Build the configured gateway adapter."""
    config = config or settings
    if config.payment_gateway == "razorpay":
        return RazorpayGateway(
            key_id=config.gateway_key_id,
            key_secret=config.gateway_key_secret,
            base_url=config.gateway_base_url,
            timeout=config.gateway_timeout_seconds,
        )
    if config.payment_gateway == "simulated":
        return SimulatedGateway(key_secret=config.gateway_key_secret)
    raise ValueError(f"Unknown payment gateway: {config.payment_gateway}")
