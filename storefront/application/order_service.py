"""Order orchestration service.

Coordinates the checkout pipeline:
- Snapshot the cart (or buy-now item) into a priced draft
- Open a payment intent for exactly the draft subtotal
- Verify the payment proof delivered by the client or the webhook
- Commit the order atomically (stock decrement + insert), exactly once
  per payment
- Cancel and move orders along their lifecycle
"""

import hashlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog

from storefront.application.payment_verifier import PaymentVerifier
from storefront.application.results import (
    CheckoutAttemptResult,
    OrderListResult,
    OrderResult,
    VerificationResult,
)
from storefront.application.snapshot_service import CartSnapshotService
from storefront.domain.base import utcnow
from storefront.domain.entities import DraftSource, Order, OrderDraft
from storefront.domain.exceptions import (
    AmountMismatchError,
    DomainError,
    NotAuthorizedError,
    NotFoundError,
    OrderNotCancellableError,
    PaymentAttemptFailedError,
    PaymentNotVerifiedError,
    SignatureMismatchError,
    StockUnavailableError,
    ValidationError,
)
from storefront.domain.repositories import (
    CartProvider,
    ConcurrencyConflictError,
    OrderRepository,
    OrderTransaction,
)
from storefront.domain.state_machines import OrderStateMachine, OrderStatus
from storefront.domain.value_objects import (
    CartLine,
    OrderId,
    PaymentIntent,
    PaymentProof,
    ShippingAddress,
    VerifiedPayment,
)
from storefront.infrastructure.notifier import LoggingNotifier, NotificationDispatcher
from storefront.infrastructure.payment_gateway import PaymentGatewayAdapter

logger = structlog.get_logger()


# ============================================================================
# Checkout Attempts
# ============================================================================


@dataclass
class CheckoutAttempt:
    """One payment attempt: a draft bound to the intent opened for it."""

    user_id: str
    draft: OrderDraft
    intent: PaymentIntent
    verified: VerifiedPayment | None = None
    failed: bool = False
    order_id: OrderId | None = None
    created_at: datetime = field(default_factory=utcnow)
    last_activity_at: datetime = field(default_factory=utcnow)

    @property
    def intent_id(self) -> str:
        return self.intent.intent_id

    @property
    def is_unpaid(self) -> bool:
        return self.verified is None and self.order_id is None

    def touch(self) -> None:
        self.last_activity_at = utcnow()

    def is_expired(self, ttl: timedelta, now: datetime | None = None) -> bool:
        return (now or utcnow()) - self.last_activity_at > ttl


class CheckoutAttemptStore:
    """In-memory registry of checkout attempts keyed by intent id.

    Attempts hold no reserved resources. One left idle for longer than
    the TTL is dropped, and only a user's newest ``max_unpaid_per_user``
    unpaid attempts are kept. Paid attempts stay until they expire so a
    late webhook or a repeated redirect still finds its order.
    """

    def __init__(self, ttl_seconds: int = 86400, max_unpaid_per_user: int = 5) -> None:
        self.ttl = timedelta(seconds=ttl_seconds)
        self.max_unpaid_per_user = max(1, max_unpaid_per_user)
        self._attempts: dict[str, CheckoutAttempt] = {}

    def __len__(self) -> int:
        return len(self._attempts)

    def save(self, attempt: CheckoutAttempt) -> None:
        self.purge_expired()
        self._attempts[attempt.intent_id] = attempt
        self._trim_unpaid(attempt.user_id)

    def get(self, intent_id: str) -> CheckoutAttempt | None:
        attempt = self._attempts.get(intent_id)
        if attempt is not None and attempt.is_expired(self.ttl):
            del self._attempts[intent_id]
            return None
        return attempt

    def purge_expired(self) -> int:
        """Drop every expired attempt; returns how many were dropped."""
        now = utcnow()
        expired = [k for k, a in self._attempts.items() if a.is_expired(self.ttl, now)]
        for intent_id in expired:
            del self._attempts[intent_id]
        if expired:
            logger.info("Checkout attempts expired", count=len(expired))
        return len(expired)

    def _trim_unpaid(self, user_id: str) -> None:
        # Insertion order is creation order
        unpaid = [a for a in self._attempts.values() if a.user_id == user_id and a.is_unpaid]
        for stale in unpaid[: -self.max_unpaid_per_user]:
            del self._attempts[stale.intent_id]
            logger.info("Checkout attempt superseded", user_id=user_id, intent_id=stale.intent_id)


def idempotency_key(user_id: str, provider_payment_id: str) -> str:
    """Derive the order idempotency key for a user's payment."""
    return hashlib.sha256(f"{user_id}:{provider_payment_id}".encode()).hexdigest()


# ============================================================================
# Order Orchestrator
# ============================================================================


class OrderOrchestrator:
    """Application service driving checkout from draft to committed order.

    Every public operation returns a result object; domain errors are
    reported through it, unexpected errors propagate and abort the
    enclosing repository transaction.
    """

    def __init__(
        self,
        orders: OrderRepository,
        carts: CartProvider,
        snapshots: CartSnapshotService,
        gateway: PaymentGatewayAdapter,
        verifier: PaymentVerifier,
        dispatcher: NotificationDispatcher | None = None,
        attempts: CheckoutAttemptStore | None = None,
        max_commit_retries: int = 3,
    ) -> None:
        """Initialize service.

        Args:
            orders: Transactional order repository.
            carts: Cart collaborator (cleared after cart-sourced orders).
            snapshots: Cart snapshot service.
            gateway: Payment gateway adapter.
            verifier: Payment proof verifier.
            dispatcher: Notification dispatcher.
            attempts: Registry of checkout attempts.
            max_commit_retries: Bound on optimistic commit retries.
        """
        self.orders = orders
        self.carts = carts
        self.snapshots = snapshots
        self.gateway = gateway
        self.verifier = verifier
        self.dispatcher = dispatcher or NotificationDispatcher(LoggingNotifier())
        self.attempts = attempts if attempts is not None else CheckoutAttemptStore()
        self.max_commit_retries = max_commit_retries

    # -------------------------------------------------------------------------
    # Checkout Attempt
    # -------------------------------------------------------------------------

    async def begin_checkout(
        self,
        user_id: str,
        shipping_address: ShippingAddress | None,
        buy_now: CartLine | None = None,
        quantity_override: int | None = None,
    ) -> CheckoutAttemptResult:
        """Snapshot the selection and open a payment intent for it.

        Args:
            user_id: Customer starting checkout.
            shipping_address: Address the order will ship to.
            buy_now: Single item bought directly instead of the cart.
            quantity_override: Quantity for the buy-now item.

        Returns:
            CheckoutAttemptResult with the draft and intent.
        """
        try:
            if shipping_address is None:
                raise ValidationError("Shipping address is required", field="shipping_address")

            snapshot = await self.snapshots.snapshot_for_user(
                user_id,
                buy_now=buy_now,
                quantity_override=quantity_override,
                shipping_address=shipping_address,
            )
            if not snapshot.success or snapshot.draft is None:
                return CheckoutAttemptResult(error=snapshot.error)
            draft = snapshot.draft

            intent = await self.gateway.open_intent(
                draft.subtotal,
                receipt=f"receipt_{draft.draft_id[:12]}",
            )
        except DomainError as e:
            logger.warning(
                "Checkout attempt not started",
                user_id=user_id,
                error_code=e.error_code,
            )
            return CheckoutAttemptResult(error=e)

        self.attempts.save(CheckoutAttempt(user_id=user_id, draft=draft, intent=intent))
        logger.info(
            "Checkout attempt started",
            user_id=user_id,
            draft_id=draft.draft_id,
            intent_id=intent.intent_id,
            amount=draft.subtotal.amount_minor,
        )
        return CheckoutAttemptResult(draft=draft, intent=intent)

    async def verify_payment(
        self,
        user_id: str | None,
        proof: PaymentProof,
        expected_intent_id: str | None = None,
        amount_signed: bool = False,
    ) -> VerificationResult:
        """Verify a proof against the attempt it claims to pay.

        A signature mismatch is fatal to the attempt: later proofs for it
        are refused until a new checkout is started. An amount mismatch
        is fatal only when the amount came from a signed source; a
        client-reported amount is rejected without touching the attempt.

        Args:
            user_id: Calling customer, or None for gateway webhooks.
            proof: Delivered payment proof.
            expected_intent_id: Intent the caller expects to be paying;
                defaults to the intent the proof names.
            amount_signed: Whether the proof amount is covered by a
                verified signature (the gateway webhook body).

        Returns:
            VerificationResult with the VerifiedPayment.
        """
        intent_id = expected_intent_id or proof.provider_order_id
        try:
            attempt = self._attempt_for(intent_id, user_id)
            if attempt.failed:
                raise PaymentAttemptFailedError(intent_id)
        except DomainError as e:
            return VerificationResult(error=e)

        attempt.touch()
        result = self.verifier.verify(proof, attempt.intent_id, attempt.intent.amount)
        if not result.success:
            fatal = isinstance(result.error, SignatureMismatchError) or (
                amount_signed and isinstance(result.error, AmountMismatchError)
            )
            if fatal and attempt.verified is None:
                attempt.failed = True
                logger.warning(
                    "Checkout attempt failed verification",
                    intent_id=intent_id,
                    error_code=result.error_code,
                )
            return result

        if attempt.verified is None:
            attempt.verified = result.verified
        return result

    def mark_attempt_failed(self, intent_id: str, reason: str | None = None) -> bool:
        """Mark an attempt failed after the gateway reports a failed payment."""
        attempt = self.attempts.get(intent_id)
        if attempt is None or attempt.verified is not None:
            return False
        attempt.failed = True
        logger.info("Checkout attempt failed", intent_id=intent_id, reason=reason)
        return True

    # -------------------------------------------------------------------------
    # Order Creation
    # -------------------------------------------------------------------------

    async def create_order(
        self,
        user_id: str,
        draft: OrderDraft,
        verified_payment: VerifiedPayment,
    ) -> OrderResult:
        """Commit a paid order, exactly once per payment.

        Stock decrement and order insert run in one repository
        transaction. A second call for the same user and provider
        payment id returns the order created by the first.

        Args:
            user_id: Customer placing the order.
            draft: Priced draft with a shipping address.
            verified_payment: Payment verified for the draft's subtotal.

        Returns:
            OrderResult with the order; ``created`` is False when an
            existing order was returned.
        """
        key = idempotency_key(user_id, verified_payment.provider_payment_id)
        try:
            existing = await self.orders.get_by_idempotency_key(key)
            if existing is not None:
                logger.info(
                    "Order already created for payment",
                    order_id=str(existing.id),
                    provider_payment_id=verified_payment.provider_payment_id,
                )
                return OrderResult(order=existing, created=False)

            if draft.user_id != user_id:
                raise NotAuthorizedError("OrderDraft", draft.draft_id)
            if verified_payment.amount != draft.subtotal:
                raise AmountMismatchError(
                    expected=draft.subtotal.amount_minor,
                    actual=verified_payment.amount.amount_minor,
                    currency=draft.subtotal.currency,
                )

            order, created = await self._commit(user_id, draft, verified_payment, key)
        except DomainError as e:
            logger.warning(
                "Order creation failed",
                user_id=user_id,
                draft_id=draft.draft_id,
                error_code=e.error_code,
                details=e.details,
            )
            return OrderResult(error=e)

        if created:
            logger.info(
                "Order created",
                order_id=str(order.id),
                order_number=order.order_number,
                user_id=user_id,
                total=order.total_amount.amount_minor,
            )
            self.dispatcher.dispatch(order.collect_events())
            if draft.source == DraftSource.CART:
                await self._clear_cart(user_id)

        attempt = self.attempts.get(verified_payment.provider_order_id)
        if attempt is not None:
            attempt.order_id = order.id
            attempt.touch()
        return OrderResult(order=order, created=created)

    async def _commit(
        self,
        user_id: str,
        draft: OrderDraft,
        verified_payment: VerifiedPayment,
        key: str,
    ) -> tuple[Order, bool]:
        for attempt in range(1, self.max_commit_retries + 1):
            try:
                async with self.orders.transaction() as tx:
                    existing = await tx.get_by_idempotency_key(key)
                    if existing is not None:
                        return existing, False

                    for line in draft.lines:
                        if not await tx.decrement_stock(line.product_ref, line.quantity):
                            raise StockUnavailableError(line.product_ref, requested=line.quantity)

                    order = Order.place(
                        user_id=user_id,
                        draft=draft,
                        payment=verified_payment,
                        idempotency_key=key,
                    )
                    await tx.add(order)
                return order, True
            except ConcurrencyConflictError as e:
                logger.info(
                    "Order commit conflict, retrying",
                    attempt=attempt,
                    max_attempts=self.max_commit_retries,
                    error=str(e),
                )
                existing = await self.orders.get_by_idempotency_key(key)
                if existing is not None:
                    return existing, False

        raise StockUnavailableError(
            None,
            reason="Could not reserve stock for this order, please try again",
        )

    async def _clear_cart(self, user_id: str) -> None:
        try:
            await self.carts.clear_cart(user_id)
        except Exception as e:
            logger.error("Failed to clear cart after order", user_id=user_id, error=str(e))

    async def confirm_payment(
        self,
        user_id: str | None,
        proof: PaymentProof,
        expected_intent_id: str | None = None,
        amount_signed: bool = False,
    ) -> OrderResult:
        """Verify a proof and commit the order it pays for.

        Both the client redirect and the gateway webhook funnel into
        this; whichever arrives second gets the already-created order.
        """
        verification = await self.verify_payment(user_id, proof, expected_intent_id, amount_signed)
        if not verification.success or verification.verified is None:
            return OrderResult(error=verification.error)

        attempt = self.attempts.get(verification.verified.provider_order_id)
        if attempt is None:
            return OrderResult(error=NotFoundError("PaymentIntent", proof.provider_order_id))
        return await self.create_order(attempt.user_id, attempt.draft, verification.verified)

    async def place_verified_order(self, user_id: str, intent_id: str) -> OrderResult:
        """Commit the order for an attempt whose payment was already verified."""
        try:
            attempt = self._attempt_for(intent_id, user_id)
            if attempt.verified is None:
                raise PaymentNotVerifiedError(intent_id)
        except DomainError as e:
            return OrderResult(error=e)
        return await self.create_order(user_id, attempt.draft, attempt.verified)

    async def find_order_for_intent(self, intent_id: str) -> Order | None:
        """Return the order committed for an intent, if any."""
        attempt = self.attempts.get(intent_id)
        if attempt is None:
            return None
        if attempt.order_id is not None:
            return await self.orders.get(attempt.order_id)
        if attempt.verified is not None:
            key = idempotency_key(attempt.user_id, attempt.verified.provider_payment_id)
            return await self.orders.get_by_idempotency_key(key)
        return None

    def _attempt_for(self, intent_id: str, user_id: str | None) -> CheckoutAttempt:
        attempt = self.attempts.get(intent_id)
        if attempt is None:
            raise NotFoundError("PaymentIntent", intent_id)
        if user_id is not None and attempt.user_id != user_id:
            raise NotAuthorizedError("PaymentIntent", intent_id)
        return attempt

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_order(self, user_id: str, order_id: str, is_admin: bool = False) -> OrderResult:
        """Fetch an order the caller owns (admins may read any)."""
        try:
            order = await self._load(order_id)
            if not is_admin and not order.is_owned_by(user_id):
                raise NotAuthorizedError("Order", order_id)
        except DomainError as e:
            return OrderResult(error=e)
        return OrderResult(order=order)

    async def list_user_orders(self, user_id: str) -> OrderListResult:
        orders = await self.orders.list_for_user(user_id)
        return OrderListResult(orders=orders, total=len(orders))

    async def list_orders(
        self,
        page: int = 1,
        page_size: int = 20,
        status: OrderStatus | None = None,
    ) -> OrderListResult:
        """List all orders (admin)."""
        orders, total = await self.orders.list_all(page=page, page_size=page_size, status=status)
        return OrderListResult(orders=orders, total=total)

    async def _load(self, order_id: str) -> Order:
        order = await self.orders.get(OrderId.from_string(order_id))
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def cancel(
        self,
        user_id: str,
        order_id: str,
        reason: str | None = None,
        is_admin: bool = False,
    ) -> OrderResult:
        """Cancel an order and give its stock back.

        Only PENDING and PROCESSING orders can be cancelled. Eligibility is
        checked again inside the transaction against the stored status.

        Args:
            user_id: Caller.
            order_id: Order to cancel.
            reason: Optional cancellation reason.
            is_admin: Whether the caller may cancel any order.

        Returns:
            OrderResult with the cancelled order, or OrderNotCancellableError.
        """

        async def _cancel(tx: OrderTransaction, order: Order) -> None:
            if not order.can_cancel():
                raise OrderNotCancellableError(order_id, order.status.value)
            order.cancel(reason)
            for line in order.lines:
                await tx.increment_stock(line.product_ref, line.quantity)

        try:
            current = await self._load(order_id)
            if not is_admin and not current.is_owned_by(user_id):
                raise NotAuthorizedError("Order", order_id)
            order = await self._mutate(current.id, _cancel)
        except DomainError as e:
            logger.info("Order cancel rejected", order_id=order_id, error_code=e.error_code)
            return OrderResult(error=e)

        logger.info(
            "Order cancelled",
            order_id=order_id,
            order_number=order.order_number,
            cancelled_by="admin" if is_admin else "customer",
        )
        self.dispatcher.dispatch(order.collect_events())
        return OrderResult(order=order)

    async def update_status(
        self,
        order_id: str,
        target: OrderStatus,
        note: str | None = None,
        courier: str | None = None,
        tracking_number: str | None = None,
        admin_id: str = "admin",
    ) -> OrderResult:
        """Move an order to ``target`` along the state machine (admin).

        Cancellation takes the same path as a customer cancel so stock
        is re-credited.
        """
        if target == OrderStatus.CANCELLED:
            return await self.cancel(admin_id, order_id, reason=note, is_admin=True)

        async def _advance(tx: OrderTransaction, order: Order) -> None:
            event = OrderStateMachine.event_towards(order.status, target, order_id=order_id)
            order.apply(event, note=note, courier=courier, tracking_number=tracking_number)

        try:
            order = await self._mutate(OrderId.from_string(order_id), _advance)
        except DomainError as e:
            logger.info("Order status update rejected", order_id=order_id, error_code=e.error_code)
            return OrderResult(error=e)

        logger.info(
            "Order status updated",
            order_id=order_id,
            status=order.status.value,
            updated_by=admin_id,
        )
        self.dispatcher.dispatch(order.collect_events())
        return OrderResult(order=order)

    async def _mutate(
        self,
        order_id: OrderId,
        mutation: Callable[[OrderTransaction, Order], Awaitable[None]],
    ) -> Order:
        """Load, change and save an order in one transaction, retrying conflicts.

        Raises:
            NotFoundError: If the order does not exist.
            ConcurrencyConflictError: If every attempt lost a race.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                async with self.orders.transaction() as tx:
                    order = await tx.get_order(order_id)
                    if order is None:
                        raise NotFoundError("Order", str(order_id))
                    await mutation(tx, order)
                    await tx.update(order)
                return order
            except ConcurrencyConflictError as e:
                if attempt >= self.max_commit_retries:
                    raise
                logger.info(
                    "Order update conflict, retrying",
                    order_id=str(order_id),
                    attempt=attempt,
                    error=str(e),
                )
