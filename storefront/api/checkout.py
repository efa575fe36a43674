"""Checkout session API endpoints.

Drives the checkout wizard (address -> payment -> confirmation):
- POST /checkout/session - start (or resume) the caller's session
- GET /checkout/session - current session
- PUT /checkout/session/address - set shipping address
- POST /checkout/session/advance - move to the next step
- POST /checkout/session/payment - submit the payment proof
- DELETE /checkout/session - discard the session
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from storefront.api.auth import CurrentUser, get_current_user
from storefront.api.errors import raise_for_error
from storefront.api.orders import (
    address_from_schema,
    address_to_schema,
    buy_now_from_schema,
    draft_to_schema,
    intent_to_schema,
    order_to_response,
    proof_from_schema,
)
from storefront.api.schemas import (
    BuyNowItemSchema,
    CheckoutAddressRequest,
    CheckoutResetResponse,
    CheckoutSessionResponse,
    CheckoutStartRequest,
    ErrorResponse,
    PaymentProofSchema,
)
from storefront.application.checkout_session import CheckoutSessionController
from storefront.application.results import SessionResult
from storefront.dependencies import get_container
from storefront.domain.entities import CheckoutSession

router = APIRouter(prefix="/checkout", tags=["Checkout"])

_ERRORS = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


# ============================================================================
# Dependencies
# ============================================================================


def get_controller() -> CheckoutSessionController:
    """Get the checkout session controller."""
    return get_container().sessions


# ============================================================================
# Converters
# ============================================================================


def session_to_response(session: CheckoutSession) -> CheckoutSessionResponse:
    """Convert CheckoutSession entity to response schema."""
    buy_now = None
    if session.buy_now is not None:
        buy_now = BuyNowItemSchema(
            product_ref=session.buy_now.product_ref,
            quantity=session.buy_now.quantity,
            size=session.buy_now.size,
        )
    return CheckoutSessionResponse(
        session_id=session.id,
        step=session.step,
        buy_now=buy_now,
        quantity_override=session.quantity_override,
        shipping_address=address_to_schema(session.shipping_address) if session.shipping_address else None,
        draft=draft_to_schema(session.draft) if session.draft else None,
        intent=intent_to_schema(session.intent) if session.intent else None,
        order=order_to_response(session.order) if session.order else None,
        last_activity_at=session.last_activity_at,
    )


def _session_or_raise(result: SessionResult, default_code: str) -> CheckoutSessionResponse:
    if not result.success or result.session is None:
        raise_for_error(result.error, default_code)
    return session_to_response(result.session)


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "/session",
    response_model=CheckoutSessionResponse,
    responses=_ERRORS,
    summary="Start checkout session",
    description="Start a session for the cart or one buy-now item. Repeating the call resumes it.",
)
async def start_session(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    controller: Annotated[CheckoutSessionController, Depends(get_controller)],
    request: CheckoutStartRequest | None = None,
) -> CheckoutSessionResponse:
    """Start or resume the caller's checkout session."""
    request = request or CheckoutStartRequest()
    result = await controller.start(
        user.user_id,
        buy_now=buy_now_from_schema(request.buy_now),
        quantity_override=request.quantity_override,
    )
    return _session_or_raise(result, "SESSION_START_FAILED")


@router.get(
    "/session",
    response_model=CheckoutSessionResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get checkout session",
)
async def get_session(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    controller: Annotated[CheckoutSessionController, Depends(get_controller)],
) -> CheckoutSessionResponse:
    result = await controller.get(user.user_id)
    return _session_or_raise(result, "SESSION_NOT_FOUND")


@router.put(
    "/session/address",
    response_model=CheckoutSessionResponse,
    responses=_ERRORS,
    summary="Set shipping address",
)
async def set_address(
    request: CheckoutAddressRequest,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    controller: Annotated[CheckoutSessionController, Depends(get_controller)],
) -> CheckoutSessionResponse:
    result = await controller.set_address(user.user_id, address_from_schema(request.shipping_address))
    return _session_or_raise(result, "SET_ADDRESS_FAILED")


@router.post(
    "/session/advance",
    response_model=CheckoutSessionResponse,
    responses={**_ERRORS, 502: {"model": ErrorResponse}, 504: {"model": ErrorResponse}},
    summary="Advance checkout step",
    description=(
        "Leaving the address step opens the payment intent. "
        "Entering confirmation requires a committed order and ends the session."
    ),
)
async def advance_session(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    controller: Annotated[CheckoutSessionController, Depends(get_controller)],
) -> CheckoutSessionResponse:
    result = await controller.advance(user.user_id)
    if result.error is not None:
        raise_for_error(result.error)
    return _session_or_raise(result, "ADVANCE_FAILED")


@router.post(
    "/session/payment",
    response_model=CheckoutSessionResponse,
    responses={**_ERRORS, 403: {"model": ErrorResponse}},
    summary="Submit payment proof",
)
async def submit_payment(
    request: PaymentProofSchema,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    controller: Annotated[CheckoutSessionController, Depends(get_controller)],
) -> CheckoutSessionResponse:
    """Verify the proof for the session's intent and commit the order."""
    result = await controller.submit_payment(user.user_id, proof_from_schema(request))
    if result.error is not None:
        raise_for_error(result.error)
    return _session_or_raise(result, "PAYMENT_FAILED")


@router.delete(
    "/session",
    response_model=CheckoutResetResponse,
    responses={409: {"model": ErrorResponse}},
    summary="Reset checkout session",
)
async def reset_session(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    controller: Annotated[CheckoutSessionController, Depends(get_controller)],
) -> CheckoutResetResponse:
    result = await controller.reset(user.user_id)
    if result.error is not None:
        raise_for_error(result.error)
    return CheckoutResetResponse()
