"""Service result types.

Every application operation returns one of these instead of raising:
either a payload or the ``DomainError`` that stopped it.
"""

from dataclasses import dataclass, field

from storefront.domain.entities import CheckoutSession, Order, OrderDraft
from storefront.domain.exceptions import DomainError
from storefront.domain.value_objects import PaymentIntent, VerifiedPayment


@dataclass
class ServiceResult:
    """Base result: ``error`` is set exactly when the operation failed."""

    error: DomainError | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def error_code(self) -> str | None:
        return self.error.error_code if self.error else None

    @property
    def message(self) -> str | None:
        return self.error.message if self.error else None


@dataclass
class SnapshotResult(ServiceResult):
    """Result of freezing a cart or buy-now item."""

    draft: OrderDraft | None = None


@dataclass
class CheckoutAttemptResult(ServiceResult):
    """Result of opening a checkout attempt (draft + payment intent)."""

    draft: OrderDraft | None = None
    intent: PaymentIntent | None = None


@dataclass
class VerificationResult(ServiceResult):
    """Result of verifying a payment proof."""

    verified: VerifiedPayment | None = None


@dataclass
class OrderResult(ServiceResult):
    """Result of an operation producing one order."""

    order: Order | None = None
    created: bool = False


@dataclass
class OrderListResult(ServiceResult):
    """Result of listing orders."""

    orders: list[Order] = field(default_factory=list)
    total: int = 0


@dataclass
class SessionResult(ServiceResult):
    """Result of a checkout session operation."""

    session: CheckoutSession | None = None
    order: Order | None = None
