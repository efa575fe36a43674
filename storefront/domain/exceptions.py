"""Domain exceptions.

The closed error taxonomy of the checkout core. Every error carries a
stable ``error_code`` and a ``details`` dict with enough context (offending
field, product reference) to render a precise client message. The API
layer maps error classes to HTTP statuses; nothing here knows about HTTP.
"""

from typing import Any, ClassVar


class DomainError(Exception):
    """Base class for all domain exceptions."""

    error_code: ClassVar[str] = "DOMAIN_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize domain error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ============================================================================
# Validation Errors
# ============================================================================


class ValidationError(DomainError):
    """Malformed or inconsistent input."""

    error_code: ClassVar[str] = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        merged = dict(details or {})
        if field is not None:
            merged.setdefault("field", field)
        super().__init__(message, details=merged)
        self.field = field


class EmptyCartError(ValidationError):
    """Raised when a snapshot is requested for an empty selection."""

    error_code: ClassVar[str] = "EMPTY_CART"

    def __init__(self, user_id: str) -> None:
        super().__init__(
            "Cannot check out an empty cart",
            field="items",
            details={"user_id": user_id},
        )


class InvalidQuantityError(ValidationError):
    """Raised when a line quantity is zero or negative."""

    error_code: ClassVar[str] = "INVALID_QUANTITY"

    def __init__(self, product_ref: str, quantity: int) -> None:
        super().__init__(
            f"Invalid quantity {quantity} for product {product_ref}: quantity must be positive",
            field="quantity",
            details={"product_ref": product_ref, "quantity": quantity},
        )


class SizeRequiredError(ValidationError):
    """Raised when a sized product is selected without a size."""

    error_code: ClassVar[str] = "SIZE_REQUIRED"

    def __init__(self, product_ref: str, available_sizes: list[str]) -> None:
        super().__init__(
            f"Size required for product {product_ref}",
            field="size",
            details={"product_ref": product_ref, "available_sizes": available_sizes},
        )


class SizeNotApplicableError(ValidationError):
    """Raised when a size is given for an unsized product, or is not offered."""

    error_code: ClassVar[str] = "SIZE_NOT_APPLICABLE"

    def __init__(
        self,
        product_ref: str,
        size: str,
        available_sizes: list[str] | None = None,
    ) -> None:
        available = available_sizes or []
        if available:
            message = f"Size '{size}' is not offered for product {product_ref}"
        else:
            message = f"Product {product_ref} does not take a size"
        super().__init__(
            message,
            field="size",
            details={
                "product_ref": product_ref,
                "size": size,
                "available_sizes": available,
            },
        )


class CurrencyMismatchError(ValidationError):
    """Raised when attempting to combine money with different currencies."""

    error_code: ClassVar[str] = "CURRENCY_MISMATCH"

    def __init__(self, currency1: str, currency2: str) -> None:
        super().__init__(
            f"Cannot combine money with different currencies: {currency1} and {currency2}",
            field="currency",
            details={"currency1": currency1, "currency2": currency2},
        )


class NegativeMoneyError(ValidationError):
    """Raised when attempting to create money with negative amount."""

    error_code: ClassVar[str] = "NEGATIVE_AMOUNT"

    def __init__(self, amount: int) -> None:
        super().__init__(
            f"Money amount cannot be negative: {amount}",
            field="amount",
            details={"amount": amount},
        )


# ============================================================================
# Stock Errors
# ============================================================================


class StockUnavailableError(DomainError):
    """Raised when requested quantity exceeds available stock."""

    error_code: ClassVar[str] = "STOCK_UNAVAILABLE"

    def __init__(
        self,
        product_ref: str | None,
        requested: int | None = None,
        available: int | None = None,
        reason: str | None = None,
    ) -> None:
        if reason:
            message = reason
        elif product_ref:
            message = f"Insufficient stock for {product_ref}"
        else:
            message = "Insufficient stock"
        super().__init__(
            message,
            details={
                "product_ref": product_ref,
                "requested": requested,
                "available": available,
            },
        )
        self.product_ref = product_ref


# ============================================================================
# Payment Errors
# ============================================================================


class PaymentError(DomainError):
    """Base class for payment verification and commitment errors."""

    error_code: ClassVar[str] = "PAYMENT_ERROR"


class SignatureMismatchError(PaymentError):
    """Raised when a payment proof's signature does not verify."""

    error_code: ClassVar[str] = "SIGNATURE_MISMATCH"

    def __init__(self, provider_order_id: str) -> None:
        super().__init__(
            "Payment signature verification failed",
            details={"provider_order_id": provider_order_id},
        )


class AmountMismatchError(PaymentError):
    """Raised when a paid amount does not match the expected amount."""

    error_code: ClassVar[str] = "AMOUNT_MISMATCH"

    def __init__(self, expected: int, actual: int, currency: str) -> None:
        super().__init__(
            f"Paid amount {actual} {currency} does not match expected {expected} {currency}",
            details={"expected": expected, "actual": actual, "currency": currency},
        )


class IntentMismatchError(PaymentError):
    """Raised when a proof belongs to a different payment intent."""

    error_code: ClassVar[str] = "INTENT_MISMATCH"

    def __init__(self, expected_intent_id: str, actual_intent_id: str) -> None:
        super().__init__(
            "Payment proof does not belong to this checkout attempt",
            details={
                "expected_intent_id": expected_intent_id,
                "actual_intent_id": actual_intent_id,
            },
        )


class PaymentAttemptFailedError(PaymentError):
    """Raised when a proof arrives for an attempt already failed."""

    error_code: ClassVar[str] = "PAYMENT_ATTEMPT_FAILED"

    def __init__(self, intent_id: str) -> None:
        super().__init__(
            "This payment attempt has failed; start a new checkout to retry",
            details={"intent_id": intent_id},
        )


class PaymentNotVerifiedError(PaymentError):
    """Raised when an order is committed before its payment is verified."""

    error_code: ClassVar[str] = "PAYMENT_NOT_VERIFIED"

    def __init__(self, intent_id: str) -> None:
        super().__init__(
            f"Payment for intent {intent_id} has not been verified",
            details={"intent_id": intent_id},
        )


# ============================================================================
# Gateway Errors
# ============================================================================


class GatewayError(DomainError):
    """Base class for payment gateway errors."""

    error_code: ClassVar[str] = "GATEWAY_ERROR"


class GatewayUnavailableError(GatewayError):
    """Raised when the gateway is unreachable or does not answer in time."""

    error_code: ClassVar[str] = "GATEWAY_UNAVAILABLE"

    def __init__(self, reason: str, timed_out: bool = False) -> None:
        super().__init__(
            "Payment gateway is unavailable, please try again",
            details={"reason": reason, "timed_out": timed_out},
        )
        self.timed_out = timed_out


class GatewayRequestError(GatewayError):
    """Raised when the gateway rejects or garbles a request."""

    error_code: ClassVar[str] = "GATEWAY_REQUEST_FAILED"

    def __init__(self, reason: str, status_code: int | None = None) -> None:
        super().__init__(
            f"Payment gateway rejected the request: {reason}",
            details={"reason": reason, "status_code": status_code},
        )


# ============================================================================
# Order Errors
# ============================================================================


class OrderError(DomainError):
    """Base class for order-related errors."""

    error_code: ClassVar[str] = "ORDER_ERROR"


class InvalidTransitionError(OrderError):
    """Raised when an order event is not allowed from the current status."""

    error_code: ClassVar[str] = "INVALID_TRANSITION"

    def __init__(
        self,
        order_id: str,
        current_status: str,
        event: str,
        allowed_events: list[str] | None = None,
    ) -> None:
        allowed = allowed_events or []
        super().__init__(
            f"Cannot apply '{event}' to order {order_id} in status '{current_status}'. "
            f"Allowed events: {allowed}",
            details={
                "order_id": order_id,
                "current_status": current_status,
                "event": event,
                "allowed_events": allowed,
            },
        )


class OrderNotCancellableError(OrderError):
    """Raised when trying to cancel an order that cannot be cancelled."""

    error_code: ClassVar[str] = "ORDER_NOT_CANCELLABLE"

    def __init__(self, order_id: str, current_status: str) -> None:
        super().__init__(
            f"Order {order_id} cannot be cancelled in status '{current_status}'",
            details={"order_id": order_id, "current_status": current_status},
        )


# ============================================================================
# Access Errors
# ============================================================================


class NotFoundError(DomainError):
    """Raised when a referenced entity does not exist."""

    error_code: ClassVar[str] = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str) -> None:
        super().__init__(
            f"{entity_type} not found: {entity_id}",
            details={"entity_type": entity_type, "entity_id": entity_id},
        )


class NotAuthorizedError(DomainError):
    """Raised when the caller does not own the resource."""

    error_code: ClassVar[str] = "NOT_AUTHORIZED"

    def __init__(self, entity_type: str, entity_id: str) -> None:
        super().__init__(
            f"Not authorized to access {entity_type.lower()} {entity_id}",
            details={"entity_type": entity_type, "entity_id": entity_id},
        )


# ============================================================================
# Checkout Session Errors
# ============================================================================


class CheckoutSessionError(DomainError):
    """Base class for checkout session errors."""

    error_code: ClassVar[str] = "CHECKOUT_SESSION_ERROR"


class SessionBusyError(CheckoutSessionError):
    """Raised when a second request touches a session already in flight."""

    error_code: ClassVar[str] = "SESSION_BUSY"

    def __init__(self, user_id: str) -> None:
        super().__init__(
            "Another checkout request is in progress for this user",
            details={"user_id": user_id},
        )


class DraftConflictError(CheckoutSessionError):
    """Raised when a session is driven by a second draft identity."""

    error_code: ClassVar[str] = "DRAFT_CONFLICT"

    def __init__(self, user_id: str, current_draft_id: str | None, new_draft_id: str | None) -> None:
        super().__init__(
            "Checkout session is bound to a different draft; reset the session first",
            details={
                "user_id": user_id,
                "current_draft_id": current_draft_id,
                "new_draft_id": new_draft_id,
            },
        )


class CheckoutStepError(CheckoutSessionError):
    """Raised when a step's preconditions are not met."""

    error_code: ClassVar[str] = "CHECKOUT_STEP_PRECONDITION"

    def __init__(self, step: str, reason: str) -> None:
        super().__init__(
            f"Cannot leave step '{step}': {reason}",
            details={"step": step, "reason": reason},
        )
