"""Tests for domain entities."""

from datetime import timedelta

import pytest

from storefront.domain.entities import (
    CheckoutSession,
    DraftSource,
    Order,
    OrderDraft,
    SizedLine,
    UnsizedLine,
    line_from_dict,
)
from storefront.domain.events import OrderCancelled, OrderPlaced, OrderStatusChanged
from storefront.domain.exceptions import (
    AmountMismatchError,
    CheckoutStepError,
    DraftConflictError,
    IntentMismatchError,
    InvalidQuantityError,
    InvalidTransitionError,
    OrderNotCancellableError,
    ValidationError,
)
from storefront.domain.state_machines import CheckoutStep, OrderEvent, OrderStatus, PaymentStatus
from storefront.domain.value_objects import (
    Money,
    PaymentIntent,
    ProductCategory,
    Size,
    VerifiedPayment,
)
from tests.factories import make_address


def unsized(ref: str = "prod-a", quantity: int = 2, price: int = 500) -> UnsizedLine:
    return UnsizedLine(
        product_ref=ref,
        name="Product A",
        category=ProductCategory.ACCESSORIES,
        quantity=quantity,
        unit_price=Money(price),
    )


def sized(ref: str = "shirt", quantity: int = 1, price: int = 1000, size: Size = Size.M) -> SizedLine:
    return SizedLine(
        product_ref=ref,
        name="Shirt",
        category=ProductCategory.MEN,
        quantity=quantity,
        unit_price=Money(price),
        size=size,
    )


def make_draft(*lines, user_id: str = "user-1") -> OrderDraft:
    return OrderDraft.build(
        user_id=user_id,
        lines=list(lines) or [unsized()],
        currency="INR",
        shipping_address=make_address(),
    )


def payment_for(draft: OrderDraft, intent_id: str = "order_abc", payment_id: str = "pay_abc") -> VerifiedPayment:
    return VerifiedPayment(
        provider_order_id=intent_id,
        provider_payment_id=payment_id,
        amount=draft.subtotal,
        method="card",
    )


def place(draft: OrderDraft | None = None) -> Order:
    draft = draft or make_draft()
    return Order.place(
        user_id=draft.user_id,
        draft=draft,
        payment=payment_for(draft),
        idempotency_key="key-1",
    )


class TestOrderLines:
    """Tests for the order line variants."""

    def test_line_total_is_unit_price_times_quantity(self) -> None:
        line = unsized(quantity=3, price=333)
        assert line.line_total == Money(999)

    def test_zero_quantity_rejected(self) -> None:
        with pytest.raises(InvalidQuantityError):
            unsized(quantity=0)

    def test_unsized_line_has_no_size(self) -> None:
        assert unsized().size is None
        assert unsized().kind == "unsized"

    def test_sized_line_carries_size(self) -> None:
        line = sized(size=Size.L)
        assert line.size == Size.L
        assert line.kind == "sized"

    def test_sized_line_requires_size_value(self) -> None:
        with pytest.raises(ValidationError):
            sized(size="L")  # type: ignore[arg-type]

    def test_lines_rebuild_as_their_own_variant(self) -> None:
        assert isinstance(line_from_dict(sized().to_dict()), SizedLine)
        assert isinstance(line_from_dict(unsized().to_dict()), UnsizedLine)


class TestOrderDraft:
    """Tests for OrderDraft."""

    def test_subtotal_is_sum_of_line_totals(self) -> None:
        draft = make_draft(unsized(quantity=2, price=500), sized(quantity=3, price=1000))
        assert draft.subtotal == Money(1000 + 3000)
        assert draft.item_count == 5
        assert draft.source == DraftSource.CART

    def test_empty_draft_rejected(self) -> None:
        with pytest.raises(ValidationError):
            OrderDraft(draft_id="d1", user_id="u1", lines=(), subtotal=Money(0))

    def test_inconsistent_subtotal_rejected(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            OrderDraft(draft_id="d1", user_id="u1", lines=(unsized(),), subtotal=Money(1))
        assert exc_info.value.field == "subtotal"

    def test_draft_ids_are_unique(self) -> None:
        assert make_draft().draft_id != make_draft().draft_id


class TestOrder:
    """Tests for the Order aggregate."""

    def test_place_starts_processing_with_completed_payment(self) -> None:
        order = place()
        assert order.status == OrderStatus.PROCESSING
        assert order.total_amount == Money(1000)
        assert order.payment_info.status == PaymentStatus.COMPLETED
        assert len(order.status_history) == 1
        assert order.order_number.startswith("ORD")
        assert len(order.order_number) == 9

    def test_place_records_order_placed(self) -> None:
        order = place()
        events = order.collect_events()
        assert len(events) == 1
        assert isinstance(events[0], OrderPlaced)
        assert events[0].recipient_email == "asha@example.com"
        assert order.collect_events() == []

    def test_place_rejects_amount_mismatch(self) -> None:
        draft = make_draft()
        payment = VerifiedPayment(
            provider_order_id="order_abc",
            provider_payment_id="pay_abc",
            amount=Money(999),
        )
        with pytest.raises(AmountMismatchError):
            Order.place(user_id="user-1", draft=draft, payment=payment, idempotency_key="k")

    def test_place_requires_address(self) -> None:
        draft = OrderDraft.build(user_id="user-1", lines=[unsized()], currency="INR")
        with pytest.raises(ValidationError):
            Order.place(user_id="user-1", draft=draft, payment=payment_for(draft), idempotency_key="k")

    def test_full_lifecycle(self) -> None:
        order = place()
        order.ship(courier="BlueDart", tracking_number="BD123")
        assert order.status == OrderStatus.SHIPPED
        assert order.courier == "BlueDart"
        order.deliver()
        assert order.status == OrderStatus.DELIVERED
        assert order.delivered_at is not None
        assert [e.status for e in order.status_history] == [
            OrderStatus.PROCESSING,
            OrderStatus.SHIPPED,
            OrderStatus.DELIVERED,
        ]

    def test_history_timestamps_strictly_increase(self) -> None:
        order = place()
        frozen = order.status_history[0].timestamp - timedelta(seconds=5)
        order.apply(order.status.allowed_events()[0], at=frozen)
        first, second = order.status_history
        assert second.timestamp > first.timestamp

    def test_every_transition_bumps_version(self) -> None:
        order = place()
        version = order.version
        order.ship()
        assert order.version == version + 1

    def test_cancel_processing_order_refunds_payment(self) -> None:
        order = place()
        order.collect_events()
        order.cancel("Changed my mind")
        assert order.status == OrderStatus.CANCELLED
        assert order.cancel_reason == "Changed my mind"
        assert order.cancelled_at is not None
        assert order.payment_info.status == PaymentStatus.REFUNDED
        events = order.collect_events()
        assert isinstance(events[0], OrderCancelled)
        assert events[0].refund_minor == 1000

    def test_cancel_delivered_order_fails_and_keeps_status(self) -> None:
        order = place()
        order.ship()
        order.deliver()
        with pytest.raises(OrderNotCancellableError):
            order.cancel()
        assert order.status == OrderStatus.DELIVERED

    def test_delivered_cannot_go_back_to_processing(self) -> None:
        order = place()
        order.ship()
        order.deliver()
        with pytest.raises(InvalidTransitionError):
            order.apply(OrderEvent.CONFIRM_PAYMENT)
        assert order.status == OrderStatus.DELIVERED

    def test_status_change_records_event(self) -> None:
        order = place()
        order.collect_events()
        order.ship()
        (event,) = order.collect_events()
        assert isinstance(event, OrderStatusChanged)
        assert event.from_status == "processing"
        assert event.to_status == "shipped"

    def test_serialization_preserves_state(self) -> None:
        order = place(make_draft(unsized(), sized()))
        order.ship(courier="DTDC", tracking_number="X1")
        restored = Order.from_dict(order.to_dict())
        assert restored.to_dict() == order.to_dict()
        assert restored == order
        assert isinstance(restored.lines[1], SizedLine)


class TestCheckoutSession:
    """Tests for the CheckoutSession entity."""

    def intent(self, amount: int = 1000, intent_id: str = "order_abc") -> PaymentIntent:
        return PaymentIntent(intent_id=intent_id, amount=Money(amount))

    def test_starts_at_address_step(self) -> None:
        session = CheckoutSession(user_id="user-1")
        assert session.step == CheckoutStep.ADDRESS

    def test_cannot_leave_address_step_without_address(self) -> None:
        session = CheckoutSession(user_id="user-1")
        with pytest.raises(CheckoutStepError):
            session.advance()

    def test_cannot_leave_address_step_without_intent(self) -> None:
        session = CheckoutSession(user_id="user-1")
        session.set_address(make_address())
        with pytest.raises(CheckoutStepError):
            session.advance()

    def test_second_draft_conflicts(self) -> None:
        session = CheckoutSession(user_id="user-1")
        session.attach_attempt(make_draft(), self.intent())
        with pytest.raises(DraftConflictError):
            session.attach_attempt(make_draft(), self.intent(intent_id="order_other"))

    def test_payment_step_requires_completed_order(self) -> None:
        draft = make_draft()
        session = CheckoutSession(user_id="user-1")
        session.set_address(make_address())
        session.attach_attempt(draft, self.intent())
        assert session.advance() == CheckoutStep.PAYMENT

        with pytest.raises(CheckoutStepError):
            session.advance()

        session.attach_order(place(draft))
        assert session.advance() == CheckoutStep.CONFIRMATION
        assert session.step.is_final()

    def test_order_from_another_intent_rejected(self) -> None:
        draft = make_draft()
        session = CheckoutSession(user_id="user-1")
        session.attach_attempt(draft, self.intent(intent_id="order_mine"))
        with pytest.raises(IntentMismatchError):
            session.attach_order(place(draft))

    def test_address_locked_after_address_step(self) -> None:
        session = CheckoutSession(user_id="user-1")
        session.set_address(make_address())
        session.attach_attempt(make_draft(), self.intent())
        session.advance()
        with pytest.raises(CheckoutStepError):
            session.set_address(make_address(city="Mysuru"))

    def test_expiry(self) -> None:
        session = CheckoutSession(user_id="user-1")
        later = session.last_activity_at + timedelta(minutes=31)
        assert session.is_expired(timedelta(minutes=30), now=later)
        assert not session.is_expired(timedelta(minutes=30), now=session.last_activity_at)
