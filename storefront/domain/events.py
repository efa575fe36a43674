"""Domain events raised by the Order aggregate.

Events are drained after a successful commit and turned into
notifications (confirmation, status update, cancellation).
"""

from dataclasses import dataclass
from typing import Any, ClassVar

from storefront.domain.base import DomainEvent


@dataclass(frozen=True)
class OrderPlaced(DomainEvent):
    """Event raised when a paid order is committed."""

    event_type: ClassVar[str] = "order.placed"

    order_number: str = ""
    user_id: str = ""
    total_minor: int = 0
    currency: str = ""
    recipient_email: str = ""

    def _payload(self) -> dict[str, Any]:
        return {
            "order_number": self.order_number,
            "user_id": self.user_id,
            "total_minor": self.total_minor,
            "currency": self.currency,
            "recipient_email": self.recipient_email,
        }


@dataclass(frozen=True)
class OrderStatusChanged(DomainEvent):
    """Event raised on every accepted status transition except cancellation."""

    event_type: ClassVar[str] = "order.status_changed"

    order_number: str = ""
    from_status: str = ""
    to_status: str = ""
    note: str | None = None
    recipient_email: str = ""

    def _payload(self) -> dict[str, Any]:
        return {
            "order_number": self.order_number,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "note": self.note,
            "recipient_email": self.recipient_email,
        }


@dataclass(frozen=True)
class OrderCancelled(DomainEvent):
    """Event raised when an order is cancelled."""

    event_type: ClassVar[str] = "order.cancelled"

    order_number: str = ""
    reason: str | None = None
    refund_minor: int = 0
    recipient_email: str = ""

    def _payload(self) -> dict[str, Any]:
        return {
            "order_number": self.order_number,
            "reason": self.reason,
            "refund_minor": self.refund_minor,
            "recipient_email": self.recipient_email,
        }
