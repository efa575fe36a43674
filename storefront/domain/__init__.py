"""Domain layer - Entities, value objects, state machines, domain events.

This module exports the core domain building blocks of the checkout core:

- **Entities**: Objects with identity (Order, CheckoutSession)
- **Value Objects**: Immutable objects compared by value (Money, ShippingAddress,
  OrderDraft, order lines, payment values)
- **State Machines**: Order lifecycle and checkout wizard steps
- **Domain Events**: Order placed / status changed / cancelled
- **Exceptions**: The closed error taxonomy

Example usage:
    from storefront.domain import Money, OrderEvent, OrderStateMachine, OrderStatus

    price = Money(amount_minor=50000, currency="INR")
    print(price * 2)  # ₹1000.00 INR

    OrderStateMachine.transition(OrderStatus.PROCESSING, OrderEvent.SHIP)
"""

# Base classes
from storefront.domain.base import AggregateRoot, DomainEvent, Entity, ValueObject

# Entities
from storefront.domain.entities import (
    CheckoutSession,
    DraftSource,
    Order,
    OrderDraft,
    OrderLine,
    PaymentInfo,
    SizedLine,
    StatusHistoryEntry,
    UnsizedLine,
    line_from_dict,
)

# Domain Events
from storefront.domain.events import OrderCancelled, OrderPlaced, OrderStatusChanged

# Exceptions
from storefront.domain.exceptions import (
    AmountMismatchError,
    CheckoutSessionError,
    CheckoutStepError,
    CurrencyMismatchError,
    DomainError,
    DraftConflictError,
    EmptyCartError,
    GatewayError,
    GatewayRequestError,
    GatewayUnavailableError,
    IntentMismatchError,
    InvalidQuantityError,
    InvalidTransitionError,
    NegativeMoneyError,
    NotAuthorizedError,
    NotFoundError,
    OrderError,
    OrderNotCancellableError,
    PaymentAttemptFailedError,
    PaymentError,
    PaymentNotVerifiedError,
    SessionBusyError,
    SignatureMismatchError,
    SizeNotApplicableError,
    SizeRequiredError,
    StockUnavailableError,
    ValidationError,
)

# State Machines
from storefront.domain.state_machines import (
    CheckoutStep,
    OrderEvent,
    OrderStateMachine,
    OrderStatus,
    PaymentStatus,
)

# Value Objects
from storefront.domain.value_objects import (
    DEFAULT_CURRENCY,
    CartLine,
    Money,
    OrderId,
    PaymentIntent,
    PaymentProof,
    ProductCategory,
    ShippingAddress,
    Size,
    VerifiedPayment,
)

__all__ = [
    # Base
    "AggregateRoot",
    "DomainEvent",
    "Entity",
    "ValueObject",
    # Entities
    "CheckoutSession",
    "DraftSource",
    "Order",
    "OrderDraft",
    "OrderLine",
    "PaymentInfo",
    "SizedLine",
    "StatusHistoryEntry",
    "UnsizedLine",
    "line_from_dict",
    # Events
    "OrderCancelled",
    "OrderPlaced",
    "OrderStatusChanged",
    # Exceptions
    "AmountMismatchError",
    "CheckoutSessionError",
    "CheckoutStepError",
    "CurrencyMismatchError",
    "DomainError",
    "DraftConflictError",
    "EmptyCartError",
    "GatewayError",
    "GatewayRequestError",
    "GatewayUnavailableError",
    "IntentMismatchError",
    "InvalidQuantityError",
    "InvalidTransitionError",
    "NegativeMoneyError",
    "NotAuthorizedError",
    "NotFoundError",
    "OrderError",
    "OrderNotCancellableError",
    "PaymentAttemptFailedError",
    "PaymentError",
    "PaymentNotVerifiedError",
    "SessionBusyError",
    "SignatureMismatchError",
    "SizeNotApplicableError",
    "SizeRequiredError",
    "StockUnavailableError",
    "ValidationError",
    # State Machines
    "CheckoutStep",
    "OrderEvent",
    "OrderStateMachine",
    "OrderStatus",
    "PaymentStatus",
    # Value Objects
    "DEFAULT_CURRENCY",
    "CartLine",
    "Money",
    "OrderId",
    "PaymentIntent",
    "PaymentProof",
    "ProductCategory",
    "ShippingAddress",
    "Size",
    "VerifiedPayment",
]
