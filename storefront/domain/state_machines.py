"""State machines for the order lifecycle and the checkout wizard.

Transitions are declared as explicit tables; anything not in a table is
rejected, never silently ignored.
"""

from enum import Enum

from storefront.domain.exceptions import InvalidTransitionError


# ============================================================================
# Order State Machine
# ============================================================================


class OrderStatus(str, Enum):
    """Order lifecycle states.

    State diagram:
        PENDING ──────────────────────────────► CANCELLED
          │                                        ▲
          │ confirm_payment                        │
          ▼                                        │
        PROCESSING ────────────────────────────────┘
          │
          │ ship
          ▼
        SHIPPED
          │
          │ deliver
          ▼
        DELIVERED

    Orders are committed directly into PROCESSING because payment is
    verified before commit. PENDING is reserved for pay-on-delivery.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    def can_transition_to(self, target: "OrderStatus") -> bool:
        """Check if some declared event leads from this state to target."""
        return target in {
            nxt for (src, _), nxt in _ORDER_TRANSITIONS.items() if src == self
        }

    def allowed_events(self) -> list["OrderEvent"]:
        """Get events accepted in this state."""
        return [event for (src, event) in _ORDER_TRANSITIONS if src == self]

    def is_terminal(self) -> bool:
        """Check if no further transitions are possible."""
        return not self.allowed_events()

    def is_cancellable(self) -> bool:
        """Check if order can be cancelled."""
        return self in _CANCELLABLE


class OrderEvent(str, Enum):
    """Events that move an order along its lifecycle."""

    CONFIRM_PAYMENT = "confirm_payment"
    SHIP = "ship"
    DELIVER = "deliver"
    CANCEL = "cancel"


_ORDER_TRANSITIONS: dict[tuple[OrderStatus, OrderEvent], OrderStatus] = {
    (OrderStatus.PENDING, OrderEvent.CONFIRM_PAYMENT): OrderStatus.PROCESSING,
    (OrderStatus.PENDING, OrderEvent.CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.PROCESSING, OrderEvent.SHIP): OrderStatus.SHIPPED,
    (OrderStatus.PROCESSING, OrderEvent.CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.SHIPPED, OrderEvent.DELIVER): OrderStatus.DELIVERED,
}

_CANCELLABLE = frozenset({OrderStatus.PENDING, OrderStatus.PROCESSING})

# Event that reaches a given target status (used by admin status updates)
_EVENT_FOR_TARGET: dict[OrderStatus, OrderEvent] = {
    OrderStatus.PROCESSING: OrderEvent.CONFIRM_PAYMENT,
    OrderStatus.SHIPPED: OrderEvent.SHIP,
    OrderStatus.DELIVERED: OrderEvent.DELIVER,
    OrderStatus.CANCELLED: OrderEvent.CANCEL,
}


class OrderStateMachine:
    """Pure transition logic for the order lifecycle."""

    INITIAL_STATUS = OrderStatus.PROCESSING

    @staticmethod
    def transition(
        current: OrderStatus,
        event: OrderEvent,
        order_id: str = "",
    ) -> OrderStatus:
        """Compute the next status for an event.

        Args:
            current: Current order status.
            event: Event being applied.
            order_id: Order identifier for the error message.

        Returns:
            The next status.

        Raises:
            InvalidTransitionError: If the edge is not declared.
        """
        try:
            return _ORDER_TRANSITIONS[(current, event)]
        except KeyError:
            raise InvalidTransitionError(
                order_id=order_id,
                current_status=current.value,
                event=event.value,
                allowed_events=[e.value for e in current.allowed_events()],
            ) from None

    @staticmethod
    def event_towards(current: OrderStatus, target: OrderStatus, order_id: str = "") -> OrderEvent:
        """Find the event that moves ``current`` to ``target``.

        Raises:
            InvalidTransitionError: If no declared edge reaches the target.
        """
        event = _EVENT_FOR_TARGET.get(target)
        if event is None or _ORDER_TRANSITIONS.get((current, event)) != target:
            raise InvalidTransitionError(
                order_id=order_id,
                current_status=current.value,
                event=f"to:{target.value}",
                allowed_events=[e.value for e in current.allowed_events()],
            )
        return event

    @staticmethod
    def can_cancel(status: OrderStatus) -> bool:
        """Cancellation eligibility: only PENDING or PROCESSING orders."""
        return status.is_cancellable()


# ============================================================================
# Payment Status
# ============================================================================


class PaymentStatus(str, Enum):
    """Status of an order's payment."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


# ============================================================================
# Checkout Wizard Steps
# ============================================================================


class CheckoutStep(str, Enum):
    """Client-visible checkout wizard steps.

    ADDRESS → PAYMENT → CONFIRMATION
    """

    ADDRESS = "address"
    PAYMENT = "payment"
    CONFIRMATION = "confirmation"

    def next_step(self) -> "CheckoutStep | None":
        """Get the following step, or None for the last one."""
        order = list(CheckoutStep)
        index = order.index(self)
        if index + 1 < len(order):
            return order[index + 1]
        return None

    def is_final(self) -> bool:
        return self.next_step() is None
