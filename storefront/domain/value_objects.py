"""Value Objects for the domain layer.

Value objects are immutable objects that are defined by their attributes
rather than identity. They are interchangeable when their values are equal.
"""

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Self
from uuid import UUID, uuid4

from storefront.domain.base import ValueObject
from storefront.domain.exceptions import (
    CurrencyMismatchError,
    NegativeMoneyError,
    ValidationError,
)

DEFAULT_CURRENCY = "INR"


# ============================================================================
# Typed Identifiers
# ============================================================================


@dataclass(frozen=True)
class OrderId(ValueObject):
    """Strongly-typed order identifier."""

    value: UUID

    @classmethod
    def generate(cls) -> Self:
        """Generate a new order ID."""
        return cls(value=uuid4())

    @classmethod
    def from_string(cls, value: str) -> Self:
        """Create OrderId from string representation.

        Raises:
            ValidationError: If the value is not a UUID.
        """
        try:
            return cls(value=UUID(value))
        except (ValueError, AttributeError, TypeError) as exc:
            raise ValidationError(f"Invalid order id: {value!r}", field="order_id") from exc

    @property
    def order_number(self) -> str:
        """Human-facing order number, e.g. ``ORD3F9A1C``."""
        return f"ORD{self.value.hex[-6:].upper()}"

    def __str__(self) -> str:
        return str(self.value)


# ============================================================================
# Catalog Vocabulary
# ============================================================================


class Size(str, Enum):
    """Garment sizes a product variant may declare."""

    XS = "XS"
    S = "S"
    M = "M"
    L = "L"
    XL = "XL"
    XXL = "XXL"
    XXXL = "XXXL"
    FREE_SIZE = "Free Size"


class ProductCategory(str, Enum):
    """Top-level product categories."""

    MEN = "men"
    WOMEN = "women"
    ACCESSORIES = "accessories"


# ============================================================================
# Money Value Object
# ============================================================================


@dataclass(frozen=True)
class Money(ValueObject):
    """Monetary value in the smallest currency unit.

    Amounts are integers (paise for INR, cents for USD) so line totals
    and subtotals never drift.

    Attributes:
        amount_minor: Amount in minor units.
        currency: ISO 4217 currency code.
    """

    amount_minor: int
    currency: str = DEFAULT_CURRENCY

    def __post_init__(self) -> None:
        if isinstance(self.amount_minor, bool) or not isinstance(self.amount_minor, int):
            raise ValidationError(
                f"Money amount must be an integer number of minor units: {self.amount_minor!r}",
                field="amount",
            )
        if self.amount_minor < 0:
            raise NegativeMoneyError(self.amount_minor)
        object.__setattr__(self, "currency", self.currency.upper())

    @classmethod
    def zero(cls, currency: str = DEFAULT_CURRENCY) -> Self:
        """Create zero amount money."""
        return cls(amount_minor=0, currency=currency)

    @classmethod
    def from_decimal(cls, amount: Decimal, currency: str = DEFAULT_CURRENCY) -> Self:
        """Create money from a decimal amount in major units (rupees, dollars)."""
        minor = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        return cls(amount_minor=minor, currency=currency)

    def to_decimal(self) -> Decimal:
        """Convert to decimal amount in major units."""
        return Decimal(self.amount_minor) / 100

    def __add__(self, other: "Money") -> "Money":
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency, other.currency)
        return Money(
            amount_minor=self.amount_minor + other.amount_minor,
            currency=self.currency,
        )

    def __mul__(self, quantity: int) -> "Money":
        return Money(
            amount_minor=self.amount_minor * quantity,
            currency=self.currency,
        )

    def __rmul__(self, quantity: int) -> "Money":
        return self.__mul__(quantity)

    def __str__(self) -> str:
        symbol = {"INR": "₹", "USD": "$", "EUR": "€", "GBP": "£"}.get(self.currency, "")
        return f"{symbol}{self.to_decimal():.2f} {self.currency}"

    def is_zero(self) -> bool:
        """Check if amount is zero."""
        return self.amount_minor == 0

    def to_dict(self) -> dict[str, Any]:
        return {"amount": self.amount_minor, "currency": self.currency}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(amount_minor=int(data["amount"]), currency=data["currency"])


# ============================================================================
# Shipping Address
# ============================================================================


_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class ShippingAddress(ValueObject):
    """Where an order ships and who receives the notifications.

    Attributes:
        full_name: Recipient name.
        email: Recipient email, used for order notifications.
        street: Street address.
        city: City name.
        state: State or region.
        zip_code: Postal code.
        country: Country name or code.
        phone: Contact phone (optional).
    """

    full_name: str
    email: str
    street: str
    city: str
    state: str
    zip_code: str
    country: str
    phone: str | None = None

    def __post_init__(self) -> None:
        for name in ("full_name", "street", "city", "state", "zip_code", "country"):
            value = getattr(self, name)
            if not value or not str(value).strip():
                raise ValidationError(f"Shipping address {name} is required", field=name)
        if not _EMAIL_RE.match(self.email or ""):
            raise ValidationError("Shipping address email is invalid", field="email")

    def format_single_line(self) -> str:
        """Format address as single line."""
        return ", ".join(
            [self.street, self.city, self.state, self.zip_code, self.country]
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "full_name": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "country": self.country,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(
            full_name=data["full_name"],
            email=data["email"],
            phone=data.get("phone"),
            street=data["street"],
            city=data["city"],
            state=data["state"],
            zip_code=data["zip_code"],
            country=data["country"],
        )


# ============================================================================
# Cart Input
# ============================================================================


@dataclass(frozen=True)
class CartLine(ValueObject):
    """One line of a user's cart, as read from the cart collaborator.

    The price remembered by the cart is informational only; snapshots
    re-read the current catalog price.
    """

    product_ref: str
    quantity: int
    size: Size | None = None
    unit_price: Money | None = None


# ============================================================================
# Payment Values
# ============================================================================


@dataclass(frozen=True)
class PaymentProof(ValueObject):
    """Client- or webhook-supplied evidence that an intent was paid.

    Never trusted until verified. ``amount_minor`` is present when the
    delivery path reports the captured amount (webhooks do).
    """

    provider_order_id: str
    provider_payment_id: str
    signature: str
    amount_minor: int | None = None
    method: str | None = None

    def __post_init__(self) -> None:
        for name in ("provider_order_id", "provider_payment_id", "signature"):
            value = getattr(self, name)
            if not value or not str(value).strip():
                raise ValidationError(f"Payment proof {name} is required", field=name)


@dataclass(frozen=True)
class VerifiedPayment(ValueObject):
    """A payment proof that passed verification against its intent."""

    provider_order_id: str
    provider_payment_id: str
    amount: Money
    method: str = "online"


@dataclass(frozen=True)
class PaymentIntent(ValueObject):
    """A provider-side reservation of an amount for one payment attempt.

    Intents are opened once per checkout attempt and never reused; an
    abandoned intent simply expires at the provider.
    """

    intent_id: str
    amount: Money
    status: str = "created"
    receipt: str | None = None

    @property
    def currency(self) -> str:
        return self.amount.currency
