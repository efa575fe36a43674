"""Checkout session controller.

Tracks the client-visible checkout wizard (address -> payment ->
confirmation) for each user. Sessions are explicit objects keyed by user
id. At most one request may work on a user's session at a time; a second
concurrent request is rejected with ``SessionBusyError`` rather than
interleaved.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

import structlog

from storefront.application.order_service import OrderOrchestrator
from storefront.application.results import SessionResult
from storefront.domain.base import utcnow
from storefront.domain.entities import CheckoutSession
from storefront.domain.exceptions import (
    CheckoutStepError,
    DomainError,
    DraftConflictError,
    NotFoundError,
    SessionBusyError,
)
from storefront.domain.state_machines import CheckoutStep
from storefront.domain.value_objects import CartLine, PaymentProof, ShippingAddress

logger = structlog.get_logger()


class CheckoutSessionController:
    """Owns every user's checkout session and drives it step by step."""

    def __init__(self, orchestrator: OrderOrchestrator, ttl_seconds: int = 1800) -> None:
        """Initialize controller.

        Args:
            orchestrator: Order orchestrator doing the real work.
            ttl_seconds: Idle time after which a session is discarded.
        """
        self.orchestrator = orchestrator
        self.ttl = timedelta(seconds=ttl_seconds)
        self._sessions: dict[str, CheckoutSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def _exclusive(self, user_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        if lock.locked():
            raise SessionBusyError(user_id)
        try:
            async with lock:
                yield
        finally:
            self._drop_lock(user_id)

    def _drop_lock(self, user_id: str) -> None:
        lock = self._locks.get(user_id)
        if lock is not None and not lock.locked() and user_id not in self._sessions:
            del self._locks[user_id]

    def _purge_expired(self) -> None:
        now = utcnow()
        for user_id, session in list(self._sessions.items()):
            lock = self._locks.get(user_id)
            if lock is not None and lock.locked():
                continue
            if session.is_expired(self.ttl, now):
                del self._sessions[user_id]
                self._locks.pop(user_id, None)
                logger.info("Checkout session expired", user_id=user_id, session_id=session.id)

    def _require(self, user_id: str) -> CheckoutSession:
        session = self._sessions.get(user_id)
        if session is None:
            raise NotFoundError("CheckoutSession", user_id)
        return session

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def start(
        self,
        user_id: str,
        buy_now: CartLine | None = None,
        quantity_override: int | None = None,
    ) -> SessionResult:
        """Create a session, or return the existing one for the same selection.

        A session already bound to a different selection must be reset
        first.
        """
        self._purge_expired()
        try:
            async with self._exclusive(user_id):
                session = self._sessions.get(user_id)
                if session is not None:
                    if not session.same_selection(buy_now, quantity_override):
                        raise DraftConflictError(
                            user_id,
                            session.draft.draft_id if session.draft else None,
                            None,
                        )
                    session.touch()
                    return SessionResult(session=session)

                session = CheckoutSession(
                    user_id=user_id,
                    buy_now=buy_now,
                    quantity_override=quantity_override,
                )
                self._sessions[user_id] = session
        except DomainError as e:
            return SessionResult(error=e)

        logger.info(
            "Checkout session started",
            user_id=user_id,
            session_id=session.id,
            buy_now=buy_now.product_ref if buy_now else None,
        )
        return SessionResult(session=session)

    async def get(self, user_id: str) -> SessionResult:
        self._purge_expired()
        try:
            return SessionResult(session=self._require(user_id))
        except DomainError as e:
            return SessionResult(error=e)

    async def set_address(self, user_id: str, address: ShippingAddress) -> SessionResult:
        """Record the shipping address on the session."""
        self._purge_expired()
        try:
            async with self._exclusive(user_id):
                session = self._require(user_id)
                session.set_address(address)
                session.touch()
        except DomainError as e:
            return SessionResult(error=e)
        return SessionResult(session=session)

    async def advance(self, user_id: str) -> SessionResult:
        """Move the wizard one step forward.

        Leaving ADDRESS needs a shipping address and opens the payment
        intent. Entering CONFIRMATION needs a committed order with a
        completed payment; the session is then discarded.
        """
        self._purge_expired()
        try:
            async with self._exclusive(user_id):
                session = self._require(user_id)

                if session.step == CheckoutStep.ADDRESS:
                    if session.shipping_address is None:
                        raise CheckoutStepError(session.step.value, "shipping address is required")
                    if session.draft is None:
                        attempt = await self.orchestrator.begin_checkout(
                            user_id,
                            session.shipping_address,
                            buy_now=session.buy_now,
                            quantity_override=session.quantity_override,
                        )
                        if not attempt.success or attempt.draft is None or attempt.intent is None:
                            session.touch()
                            return SessionResult(session=session, error=attempt.error)
                        session.attach_attempt(attempt.draft, attempt.intent)

                elif session.step == CheckoutStep.PAYMENT and session.order is None and session.intent:
                    order = await self.orchestrator.find_order_for_intent(session.intent.intent_id)
                    if order is not None:
                        session.attach_order(order)

                step = session.advance()
                if step.is_final():
                    del self._sessions[user_id]
        except DomainError as e:
            return SessionResult(error=e)

        logger.info("Checkout session advanced", user_id=user_id, step=step.value)
        return SessionResult(session=session, order=session.order)

    async def submit_payment(self, user_id: str, proof: PaymentProof) -> SessionResult:
        """Verify a proof for the session's intent and commit the order."""
        self._purge_expired()
        try:
            async with self._exclusive(user_id):
                session = self._require(user_id)
                if session.step != CheckoutStep.PAYMENT or session.intent is None:
                    raise CheckoutStepError(session.step.value, "no payment is in progress")

                result = await self.orchestrator.confirm_payment(
                    user_id,
                    proof,
                    expected_intent_id=session.intent.intent_id,
                )
                session.touch()
                if not result.success or result.order is None:
                    return SessionResult(session=session, error=result.error)
                session.attach_order(result.order)
        except DomainError as e:
            return SessionResult(error=e)
        return SessionResult(session=session, order=session.order)

    async def reset(self, user_id: str) -> SessionResult:
        """Discard the user's session entirely."""
        try:
            async with self._exclusive(user_id):
                session = self._sessions.pop(user_id, None)
        except DomainError as e:
            return SessionResult(error=e)
        if session is not None:
            logger.info("Checkout session reset", user_id=user_id, session_id=session.id)
        return SessionResult()
