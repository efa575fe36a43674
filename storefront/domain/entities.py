"""Domain entities for the storefront checkout core.

Entities are domain objects with identity that persists across state changes.
This module contains the order line variants, the immutable order draft,
the Order aggregate and the per-user CheckoutSession.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, ClassVar, Self
from uuid import uuid4

from storefront.domain.base import AggregateRoot, Entity, ValueObject, utcnow
from storefront.domain.events import OrderCancelled, OrderPlaced, OrderStatusChanged
from storefront.domain.exceptions import (
    AmountMismatchError,
    CheckoutStepError,
    DraftConflictError,
    IntentMismatchError,
    InvalidQuantityError,
    OrderNotCancellableError,
    ValidationError,
)
from storefront.domain.state_machines import (
    CheckoutStep,
    OrderEvent,
    OrderStateMachine,
    OrderStatus,
    PaymentStatus,
)
from storefront.domain.value_objects import (
    CartLine,
    Money,
    OrderId,
    PaymentIntent,
    ProductCategory,
    ShippingAddress,
    Size,
    VerifiedPayment,
)


# ============================================================================
# Order Lines
# ============================================================================


@dataclass(frozen=True)
class OrderLine(ValueObject):
    """A priced line of a draft or order.

    Lines come in two variants selected at snapshot time: ``SizedLine``
    for products that declare size options and ``UnsizedLine`` for the
    rest. ``line_total`` is always derived, never supplied.

    Attributes:
        product_ref: Catalog product reference.
        name: Product name at snapshot time.
        category: Product category.
        quantity: Number of units (positive).
        unit_price: Catalog price per unit at snapshot time.
        line_total: ``unit_price * quantity``.
    """

    kind: ClassVar[str] = "line"

    product_ref: str
    name: str
    category: ProductCategory
    quantity: int
    unit_price: Money
    line_total: Money = field(init=False)

    def __post_init__(self) -> None:
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int) or self.quantity <= 0:
            raise InvalidQuantityError(self.product_ref, self.quantity)
        object.__setattr__(self, "line_total", self.unit_price * self.quantity)

    def to_dict(self) -> dict[str, Any]:
        size = getattr(self, "size", None)
        return {
            "kind": self.kind,
            "product_ref": self.product_ref,
            "name": self.name,
            "category": self.category.value,
            "quantity": self.quantity,
            "unit_price": self.unit_price.to_dict(),
            "line_total": self.line_total.to_dict(),
            "size": size.value if size else None,
        }


@dataclass(frozen=True)
class UnsizedLine(OrderLine):
    """Line for a product without size options."""

    kind: ClassVar[str] = "unsized"

    @property
    def size(self) -> None:
        return None


@dataclass(frozen=True)
class SizedLine(OrderLine):
    """Line for a product that declares size options."""

    kind: ClassVar[str] = "sized"

    size: Size

    def __post_init__(self) -> None:
        if not isinstance(self.size, Size):
            raise ValidationError(
                f"Sized line for {self.product_ref} needs a valid size",
                field="size",
                details={"product_ref": self.product_ref},
            )
        super().__post_init__()


def line_from_dict(data: dict[str, Any]) -> OrderLine:
    """Rebuild a tagged order line from its serialized form."""
    common = {
        "product_ref": data["product_ref"],
        "name": data["name"],
        "category": ProductCategory(data["category"]),
        "quantity": int(data["quantity"]),
        "unit_price": Money.from_dict(data["unit_price"]),
    }
    if data.get("kind") == SizedLine.kind:
        return SizedLine(size=Size(data["size"]), **common)
    return UnsizedLine(**common)


# ============================================================================
# Order Draft
# ============================================================================


class DraftSource(str, Enum):
    """Where the draft's lines came from."""

    CART = "cart"
    BUY_NOW = "buy_now"


@dataclass(frozen=True)
class OrderDraft(ValueObject):
    """Immutable, priced snapshot of the selected items.

    Drafts are never persisted; they live for one checkout attempt.

    Attributes:
        draft_id: Identity of this snapshot.
        user_id: Owner of the selection.
        lines: Priced lines.
        subtotal: Sum of all line totals.
        source: Cart or buy-now.
        shipping_address: Where the order will ship, if already known.
        buy_now: The single item requested, for buy-now drafts.
        created_at: Snapshot time.
    """

    draft_id: str
    user_id: str
    lines: tuple[OrderLine, ...]
    subtotal: Money
    source: DraftSource = DraftSource.CART
    shipping_address: ShippingAddress | None = None
    buy_now: CartLine | None = None
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if not self.lines:
            raise ValidationError("Order draft must contain at least one line", field="lines")
        total = Money.zero(self.subtotal.currency)
        for line in self.lines:
            total = total + line.line_total
        if total != self.subtotal:
            raise ValidationError(
                "Draft subtotal does not equal the sum of its lines",
                field="subtotal",
                details={"expected": total.amount_minor, "actual": self.subtotal.amount_minor},
            )

    @classmethod
    def build(
        cls,
        user_id: str,
        lines: list[OrderLine],
        currency: str,
        source: DraftSource = DraftSource.CART,
        shipping_address: ShippingAddress | None = None,
        buy_now: CartLine | None = None,
    ) -> Self:
        """Create a draft, summing line totals into the subtotal."""
        subtotal = Money.zero(currency)
        for line in lines:
            subtotal = subtotal + line.line_total
        return cls(
            draft_id=uuid4().hex,
            user_id=user_id,
            lines=tuple(lines),
            subtotal=subtotal,
            source=source,
            shipping_address=shipping_address,
            buy_now=buy_now,
        )

    def with_address(self, address: ShippingAddress) -> Self:
        return replace(self, shipping_address=address)

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)


# ============================================================================
# Order Aggregate
# ============================================================================


@dataclass(frozen=True)
class PaymentInfo(ValueObject):
    """Payment facts recorded on an order."""

    method: str
    status: PaymentStatus
    provider_order_id: str
    provider_payment_id: str
    amount_paid: Money

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method,
            "status": self.status.value,
            "provider_order_id": self.provider_order_id,
            "provider_payment_id": self.provider_payment_id,
            "amount_paid": self.amount_paid.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(
            method=data["method"],
            status=PaymentStatus(data["status"]),
            provider_order_id=data["provider_order_id"],
            provider_payment_id=data["provider_payment_id"],
            amount_paid=Money.from_dict(data["amount_paid"]),
        )


@dataclass(frozen=True)
class StatusHistoryEntry(ValueObject):
    """One accepted status transition."""

    status: OrderStatus
    timestamp: datetime
    note: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "note": self.note,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(
            status=OrderStatus(data["status"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            note=data.get("note"),
        )


@dataclass(kw_only=True, eq=False)
class Order(AggregateRoot[OrderId]):
    """Order aggregate root.

    Orders are created exactly once per verified payment and are
    immutable afterwards, except for status, status history, payment
    status and the delivery / terminal fields.

    Attributes:
        id: Unique order identifier.
        user_id: Owner of the order.
        lines: Order lines copied from the draft.
        total_amount: Order total.
        shipping_address: Shipping address.
        payment_info: Verified payment facts.
        status: Current order status.
        status_history: Append-only transition log.
        idempotency_key: Key derived from user and provider payment id.
        courier: Shipping courier, set on ship.
        tracking_number: Shipping tracking number, set on ship.
        delivered_at: Delivery timestamp.
        cancelled_at: Cancellation timestamp.
        cancel_reason: Reason given for cancellation.
    """

    id: OrderId
    user_id: str
    lines: tuple[OrderLine, ...]
    total_amount: Money
    shipping_address: ShippingAddress
    payment_info: PaymentInfo
    idempotency_key: str
    status: OrderStatus = OrderStatus.PROCESSING
    status_history: list[StatusHistoryEntry] = field(default_factory=list)
    courier: str | None = None
    tracking_number: str | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None

    @classmethod
    def place(
        cls,
        user_id: str,
        draft: OrderDraft,
        payment: VerifiedPayment,
        idempotency_key: str,
        order_id: OrderId | None = None,
    ) -> "Order":
        """Create a paid order from a draft.

        The order starts in ``PROCESSING`` because its payment is verified
        before commit.

        Args:
            user_id: Owner of the order.
            draft: Priced draft with a shipping address.
            payment: Verified payment for the draft's subtotal.
            idempotency_key: Key collapsing duplicate commits.
            order_id: Optional pre-generated order ID.

        Returns:
            New Order instance.

        Raises:
            ValidationError: If the draft has no shipping address.
            AmountMismatchError: If the payment does not cover the subtotal exactly.
        """
        if draft.shipping_address is None:
            raise ValidationError("Shipping address is required", field="shipping_address")
        if payment.amount != draft.subtotal:
            raise AmountMismatchError(
                expected=draft.subtotal.amount_minor,
                actual=payment.amount.amount_minor,
                currency=draft.subtotal.currency,
            )

        now = utcnow()
        status = OrderStateMachine.INITIAL_STATUS
        order = cls(
            id=order_id or OrderId.generate(),
            user_id=user_id,
            lines=draft.lines,
            total_amount=draft.subtotal,
            shipping_address=draft.shipping_address,
            payment_info=PaymentInfo(
                method=payment.method,
                status=PaymentStatus.COMPLETED,
                provider_order_id=payment.provider_order_id,
                provider_payment_id=payment.provider_payment_id,
                amount_paid=payment.amount,
            ),
            idempotency_key=idempotency_key,
            status=status,
            status_history=[StatusHistoryEntry(status=status, timestamp=now, note="Payment verified")],
            created_at=now,
            updated_at=now,
        )
        order._record_event(
            OrderPlaced(
                aggregate_id=str(order.id),
                order_number=order.order_number,
                user_id=user_id,
                total_minor=order.total_amount.amount_minor,
                currency=order.total_amount.currency,
                recipient_email=order.shipping_address.email,
            )
        )
        return order

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    @property
    def order_number(self) -> str:
        return self.id.order_number

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def can_cancel(self) -> bool:
        """Check if order can be cancelled."""
        return OrderStateMachine.can_cancel(self.status)

    def is_owned_by(self, user_id: str) -> bool:
        return self.user_id == user_id

    # -------------------------------------------------------------------------
    # State Transitions
    # -------------------------------------------------------------------------

    def apply(
        self,
        event: OrderEvent,
        note: str | None = None,
        courier: str | None = None,
        tracking_number: str | None = None,
        at: datetime | None = None,
    ) -> OrderStatus:
        """Apply a lifecycle event.

        Args:
            event: Event to apply.
            note: Optional note stored with the history entry.
            courier: Courier name, for ``SHIP``.
            tracking_number: Tracking number, for ``SHIP``.
            at: Transition time (defaults to now).

        Returns:
            The new status.

        Raises:
            InvalidTransitionError: If the event is not allowed from the current status.
        """
        previous = self.status
        target = OrderStateMachine.transition(previous, event, order_id=str(self.id))
        timestamp = self._next_timestamp(at)

        self.status = target
        self.status_history.append(StatusHistoryEntry(status=target, timestamp=timestamp, note=note))

        if target == OrderStatus.SHIPPED:
            self.courier = courier
            self.tracking_number = tracking_number
        elif target == OrderStatus.DELIVERED:
            self.delivered_at = timestamp
        elif target == OrderStatus.CANCELLED:
            self.cancelled_at = timestamp
            self.cancel_reason = note
            if self.payment_info.status == PaymentStatus.COMPLETED:
                self.payment_info = replace(self.payment_info, status=PaymentStatus.REFUNDED)

        self._touch(timestamp)

        if target == OrderStatus.CANCELLED:
            refund = self.payment_info.amount_paid if self.payment_info.status == PaymentStatus.REFUNDED else None
            self._record_event(
                OrderCancelled(
                    aggregate_id=str(self.id),
                    order_number=self.order_number,
                    reason=note,
                    refund_minor=refund.amount_minor if refund else 0,
                    recipient_email=self.shipping_address.email,
                )
            )
        else:
            self._record_event(
                OrderStatusChanged(
                    aggregate_id=str(self.id),
                    order_number=self.order_number,
                    from_status=previous.value,
                    to_status=target.value,
                    note=note,
                    recipient_email=self.shipping_address.email,
                )
            )
        return target

    def cancel(self, reason: str | None = None) -> None:
        """Cancel the order.

        Raises:
            OrderNotCancellableError: If the order is past processing.
        """
        if not self.can_cancel():
            raise OrderNotCancellableError(str(self.id), self.status.value)
        self.apply(OrderEvent.CANCEL, note=reason or "Cancelled by customer")

    def ship(self, courier: str | None = None, tracking_number: str | None = None) -> None:
        """Mark order as shipped."""
        self.apply(OrderEvent.SHIP, courier=courier, tracking_number=tracking_number)

    def deliver(self) -> None:
        """Mark order as delivered."""
        self.apply(OrderEvent.DELIVER)

    def _next_timestamp(self, at: datetime | None) -> datetime:
        # History timestamps must strictly increase.
        timestamp = at or utcnow()
        if self.status_history:
            last = self.status_history[-1].timestamp
            if timestamp <= last:
                timestamp = last + timedelta(microseconds=1)
        return timestamp

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "order_number": self.order_number,
            "user_id": self.user_id,
            "lines": [line.to_dict() for line in self.lines],
            "total_amount": self.total_amount.to_dict(),
            "shipping_address": self.shipping_address.to_dict(),
            "payment_info": self.payment_info.to_dict(),
            "idempotency_key": self.idempotency_key,
            "status": self.status.value,
            "status_history": [entry.to_dict() for entry in self.status_history],
            "courier": self.courier,
            "tracking_number": self.tracking_number,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "cancel_reason": self.cancel_reason,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Order":
        def _dt(value: str | None) -> datetime | None:
            return datetime.fromisoformat(value) if value else None

        return cls(
            id=OrderId.from_string(data["id"]),
            user_id=data["user_id"],
            lines=tuple(line_from_dict(line) for line in data["lines"]),
            total_amount=Money.from_dict(data["total_amount"]),
            shipping_address=ShippingAddress.from_dict(data["shipping_address"]),
            payment_info=PaymentInfo.from_dict(data["payment_info"]),
            idempotency_key=data["idempotency_key"],
            status=OrderStatus(data["status"]),
            status_history=[StatusHistoryEntry.from_dict(e) for e in data["status_history"]],
            courier=data.get("courier"),
            tracking_number=data.get("tracking_number"),
            delivered_at=_dt(data.get("delivered_at")),
            cancelled_at=_dt(data.get("cancelled_at")),
            cancel_reason=data.get("cancel_reason"),
            version=int(data.get("version", 1)),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


# ============================================================================
# Checkout Session
# ============================================================================


@dataclass(kw_only=True, eq=False)
class CheckoutSession(Entity[str]):
    """Client-visible checkout wizard state for one user.

    A session is bound to one draft identity at a time. The selection
    (whole cart or one buy-now item) is fixed when the session starts.

    Attributes:
        id: Session identifier.
        user_id: Owning user.
        step: Current wizard step.
        buy_now: Single item being bought directly, if any.
        quantity_override: Quantity override for the buy-now item.
        shipping_address: Address collected in the address step.
        draft: Draft of the in-flight attempt.
        intent: Payment intent of the in-flight attempt.
        order: Committed order, once payment completes.
        created_at: Session creation time.
        last_activity_at: Last time a request touched the session.
    """

    id: str = field(default_factory=lambda: uuid4().hex)
    user_id: str
    step: CheckoutStep = CheckoutStep.ADDRESS
    buy_now: CartLine | None = None
    quantity_override: int | None = None
    shipping_address: ShippingAddress | None = None
    draft: OrderDraft | None = None
    intent: PaymentIntent | None = None
    order: Order | None = None
    created_at: datetime = field(default_factory=utcnow)
    last_activity_at: datetime = field(default_factory=utcnow)

    def touch(self, at: datetime | None = None) -> None:
        self.last_activity_at = at or utcnow()

    def is_expired(self, ttl: timedelta, now: datetime | None = None) -> bool:
        return (now or utcnow()) - self.last_activity_at > ttl

    def same_selection(self, buy_now: CartLine | None, quantity_override: int | None) -> bool:
        """Check whether a start request targets this session's selection."""
        return self.buy_now == buy_now and self.quantity_override == quantity_override

    def set_address(self, address: ShippingAddress) -> None:
        """Record the shipping address.

        Raises:
            CheckoutStepError: If the session already left the address step.
        """
        if self.step != CheckoutStep.ADDRESS:
            raise CheckoutStepError(self.step.value, "shipping address can only be changed in the address step")
        self.shipping_address = address

    def attach_attempt(self, draft: OrderDraft, intent: PaymentIntent) -> None:
        """Bind the session to a draft and its payment intent.

        Raises:
            DraftConflictError: If the session is already bound to another draft.
        """
        if self.draft is not None and self.draft.draft_id != draft.draft_id:
            raise DraftConflictError(self.user_id, self.draft.draft_id, draft.draft_id)
        self.draft = draft
        self.intent = intent

    def attach_order(self, order: Order) -> None:
        """Attach the order committed for this session's intent.

        Raises:
            IntentMismatchError: If the order was paid through another intent.
        """
        expected = self.intent.intent_id if self.intent else ""
        if order.payment_info.provider_order_id != expected:
            raise IntentMismatchError(expected, order.payment_info.provider_order_id)
        self.order = order

    def advance(self) -> CheckoutStep:
        """Move to the next step if the current step's preconditions hold.

        Returns:
            The new step.

        Raises:
            CheckoutStepError: If a precondition is not met.
        """
        nxt = self.step.next_step()
        if nxt is None:
            raise CheckoutStepError(self.step.value, "checkout is already complete")
        if self.step == CheckoutStep.ADDRESS:
            if self.shipping_address is None:
                raise CheckoutStepError(self.step.value, "shipping address is required")
            if self.draft is None or self.intent is None:
                raise CheckoutStepError(self.step.value, "payment has not been initiated")
        elif self.step == CheckoutStep.PAYMENT:
            if self.order is None or self.order.payment_info.status != PaymentStatus.COMPLETED:
                raise CheckoutStepError(self.step.value, "payment has not been completed")
        self.step = nxt
        self.touch()
        return nxt
