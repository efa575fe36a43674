"""Tests for domain state machines."""

import itertools

import pytest

from storefront.domain.exceptions import InvalidTransitionError
from storefront.domain.state_machines import (
    CheckoutStep,
    OrderEvent,
    OrderStateMachine,
    OrderStatus,
)

DECLARED_EDGES = {
    (OrderStatus.PENDING, OrderEvent.CONFIRM_PAYMENT): OrderStatus.PROCESSING,
    (OrderStatus.PENDING, OrderEvent.CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.PROCESSING, OrderEvent.SHIP): OrderStatus.SHIPPED,
    (OrderStatus.PROCESSING, OrderEvent.CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.SHIPPED, OrderEvent.DELIVER): OrderStatus.DELIVERED,
}


class TestOrderStateMachine:
    """Tests for the order lifecycle transitions."""

    def test_orders_start_in_processing(self) -> None:
        assert OrderStateMachine.INITIAL_STATUS == OrderStatus.PROCESSING

    @pytest.mark.parametrize(("edge", "target"), list(DECLARED_EDGES.items()))
    def test_declared_edges_are_accepted(self, edge, target) -> None:
        current, event = edge
        assert OrderStateMachine.transition(current, event) == target

    def test_every_undeclared_edge_is_rejected(self) -> None:
        """The transition graph has no implicit edges."""
        for current, event in itertools.product(OrderStatus, OrderEvent):
            if (current, event) in DECLARED_EDGES:
                continue
            with pytest.raises(InvalidTransitionError):
                OrderStateMachine.transition(current, event, order_id="o-1")

    def test_rejection_reports_allowed_events(self) -> None:
        with pytest.raises(InvalidTransitionError) as exc_info:
            OrderStateMachine.transition(OrderStatus.SHIPPED, OrderEvent.CANCEL, order_id="o-1")
        assert exc_info.value.details["allowed_events"] == ["deliver"]
        assert exc_info.value.details["current_status"] == "shipped"

    def test_delivered_to_processing_always_fails(self) -> None:
        with pytest.raises(InvalidTransitionError):
            OrderStateMachine.event_towards(OrderStatus.DELIVERED, OrderStatus.PROCESSING)

    def test_terminal_states(self) -> None:
        assert OrderStatus.DELIVERED.is_terminal()
        assert OrderStatus.CANCELLED.is_terminal()
        assert not OrderStatus.SHIPPED.is_terminal()

    def test_only_pending_and_processing_are_cancellable(self) -> None:
        cancellable = {s for s in OrderStatus if OrderStateMachine.can_cancel(s)}
        assert cancellable == {OrderStatus.PENDING, OrderStatus.PROCESSING}

    def test_event_towards_finds_declared_event(self) -> None:
        assert OrderStateMachine.event_towards(OrderStatus.PROCESSING, OrderStatus.SHIPPED) == OrderEvent.SHIP
        assert OrderStateMachine.event_towards(OrderStatus.SHIPPED, OrderStatus.DELIVERED) == OrderEvent.DELIVER

    def test_event_towards_rejects_skipping_a_step(self) -> None:
        with pytest.raises(InvalidTransitionError):
            OrderStateMachine.event_towards(OrderStatus.PROCESSING, OrderStatus.DELIVERED)

    def test_can_transition_to(self) -> None:
        assert OrderStatus.PROCESSING.can_transition_to(OrderStatus.SHIPPED)
        assert not OrderStatus.SHIPPED.can_transition_to(OrderStatus.CANCELLED)


class TestCheckoutStep:
    """Tests for the checkout wizard steps."""

    def test_step_order(self) -> None:
        assert CheckoutStep.ADDRESS.next_step() == CheckoutStep.PAYMENT
        assert CheckoutStep.PAYMENT.next_step() == CheckoutStep.CONFIRMATION
        assert CheckoutStep.CONFIRMATION.next_step() is None

    def test_confirmation_is_final(self) -> None:
        assert CheckoutStep.CONFIRMATION.is_final()
        assert not CheckoutStep.ADDRESS.is_final()
