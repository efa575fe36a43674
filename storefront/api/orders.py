"""Order API endpoints.

Provides endpoints for payment and order lifecycle:
- POST /orders/create-payment - snapshot the cart and open a payment intent
- POST /orders/verify-payment - verify a payment proof
- POST /orders - commit the order for a verified payment
- GET /orders/my-orders - caller's orders
- GET /orders - all orders (admin)
- GET /orders/{id} - order details
- POST /orders/{id}/cancel - cancel an order
- PATCH /orders/{id}/status - move an order along its lifecycle (admin)
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from storefront.api.auth import CurrentUser, get_current_user, require_admin
from storefront.api.errors import raise_for_error
from storefront.api.schemas import (
    BuyNowItemSchema,
    CreateOrderRequest,
    CreatePaymentRequest,
    CreatePaymentResponse,
    DraftSchema,
    ErrorResponse,
    OrderCancelRequest,
    OrderLineSchema,
    OrderResponse,
    OrdersListResponse,
    OrderStatusHistorySchema,
    OrderStatusUpdateRequest,
    PaymentInfoSchema,
    PaymentIntentSchema,
    PaymentProofSchema,
    PriceSchema,
    ShippingAddressSchema,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from storefront.application.order_service import OrderOrchestrator
from storefront.dependencies import get_container
from storefront.domain.entities import Order, OrderDraft, OrderLine
from storefront.domain.state_machines import OrderStatus
from storefront.domain.value_objects import (
    CartLine,
    Money,
    PaymentIntent,
    PaymentProof,
    ShippingAddress,
)

router = APIRouter(prefix="/orders", tags=["Orders"])


# ============================================================================
# Dependencies
# ============================================================================


def get_orchestrator() -> OrderOrchestrator:
    """Get the order orchestrator."""
    return get_container().orchestrator


# ============================================================================
# Converters
# ============================================================================


def price_schema(money: Money) -> PriceSchema:
    return PriceSchema(amount=money.amount_minor, currency=money.currency)


def address_from_schema(schema: ShippingAddressSchema) -> ShippingAddress:
    """Build the domain address; raises ValidationError on bad input."""
    return ShippingAddress(
        full_name=schema.full_name,
        email=schema.email,
        phone=schema.phone,
        street=schema.street,
        city=schema.city,
        state=schema.state,
        zip_code=schema.zip_code,
        country=schema.country,
    )


def address_to_schema(address: ShippingAddress) -> ShippingAddressSchema:
    return ShippingAddressSchema(**address.to_dict())


def buy_now_from_schema(schema: BuyNowItemSchema | None) -> CartLine | None:
    if schema is None:
        return None
    return CartLine(product_ref=schema.product_ref, quantity=schema.quantity, size=schema.size)


def proof_from_schema(schema: PaymentProofSchema) -> PaymentProof:
    return PaymentProof(
        provider_order_id=schema.provider_order_id,
        provider_payment_id=schema.provider_payment_id,
        signature=schema.signature,
        amount_minor=schema.amount,
        method=schema.method,
    )


def line_to_schema(line: OrderLine) -> OrderLineSchema:
    return OrderLineSchema(
        kind=line.kind,
        product_ref=line.product_ref,
        name=line.name,
        category=line.category,
        size=line.size,
        quantity=line.quantity,
        unit_price=price_schema(line.unit_price),
        line_total=price_schema(line.line_total),
    )


def draft_to_schema(draft: OrderDraft) -> DraftSchema:
    return DraftSchema(
        draft_id=draft.draft_id,
        source=draft.source.value,
        lines=[line_to_schema(line) for line in draft.lines],
        subtotal=price_schema(draft.subtotal),
        item_count=draft.item_count,
        created_at=draft.created_at,
    )


def intent_to_schema(intent: PaymentIntent) -> PaymentIntentSchema:
    return PaymentIntentSchema(
        intent_id=intent.intent_id,
        amount=price_schema(intent.amount),
        status=intent.status,
        receipt=intent.receipt,
    )


def order_to_response(order: Order) -> OrderResponse:
    """Convert Order aggregate to response schema."""
    payment = order.payment_info
    return OrderResponse(
        id=str(order.id),
        order_number=order.order_number,
        user_id=order.user_id,
        status=order.status,
        lines=[line_to_schema(line) for line in order.lines],
        item_count=order.item_count,
        total_amount=price_schema(order.total_amount),
        shipping_address=address_to_schema(order.shipping_address),
        payment_info=PaymentInfoSchema(
            method=payment.method,
            status=payment.status,
            provider_order_id=payment.provider_order_id,
            provider_payment_id=payment.provider_payment_id,
            amount_paid=price_schema(payment.amount_paid),
        ),
        status_history=[
            OrderStatusHistorySchema(status=entry.status, timestamp=entry.timestamp, note=entry.note)
            for entry in order.status_history
        ],
        courier=order.courier,
        tracking_number=order.tracking_number,
        delivered_at=order.delivered_at,
        cancelled_at=order.cancelled_at,
        cancel_reason=order.cancel_reason,
        can_cancel=order.can_cancel(),
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


# ============================================================================
# Payment Endpoints
# ============================================================================


@router.post(
    "/create-payment",
    response_model=CreatePaymentResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
    summary="Open a payment intent",
    description="Snapshot the cart (or a buy-now item) and open a gateway intent for its subtotal.",
)
async def create_payment(
    request: CreatePaymentRequest,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)],
) -> CreatePaymentResponse:
    """Start a checkout attempt.

    Args:
        request: Address and optional buy-now selection.
        user: Calling customer.
        orchestrator: Order orchestrator.

    Returns:
        The opened intent and the draft it pays for.
    """
    result = await orchestrator.begin_checkout(
        user.user_id,
        address_from_schema(request.shipping_address),
        buy_now=buy_now_from_schema(request.buy_now),
        quantity_override=request.quantity_override,
    )
    if not result.success or result.draft is None or result.intent is None:
        raise_for_error(result.error, "CREATE_PAYMENT_FAILED")

    return CreatePaymentResponse(
        key_id=get_container().config.gateway_key_id,
        intent=intent_to_schema(result.intent),
        draft=draft_to_schema(result.draft),
    )


@router.post(
    "/verify-payment",
    response_model=VerifyPaymentResponse,
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Verify a payment proof",
)
async def verify_payment(
    request: VerifyPaymentRequest,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)],
) -> VerifyPaymentResponse:
    """Verify the proof the client got back from the gateway checkout."""
    result = await orchestrator.verify_payment(user.user_id, proof_from_schema(request))
    if not result.success or result.verified is None:
        raise_for_error(result.error, "VERIFICATION_FAILED")

    verified = result.verified
    return VerifyPaymentResponse(
        intent_id=verified.provider_order_id,
        payment_id=verified.provider_payment_id,
        amount=price_schema(verified.amount),
    )


# ============================================================================
# Order Endpoints
# ============================================================================


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        402: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Commit an order",
    description="Commit the order for a verified payment. Repeating the call returns the same order.",
)
async def create_order(
    request: CreateOrderRequest,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)],
) -> OrderResponse:
    """Commit the order for a checkout attempt.

    With a ``payment`` proof in the body the proof is verified first;
    otherwise the attempt's payment must already be verified.
    """
    if request.payment is not None:
        result = await orchestrator.confirm_payment(
            user.user_id,
            proof_from_schema(request.payment),
            expected_intent_id=request.intent_id,
        )
    else:
        result = await orchestrator.place_verified_order(user.user_id, request.intent_id)

    if not result.success or result.order is None:
        raise_for_error(result.error, "ORDER_CREATION_FAILED")
    return order_to_response(result.order)


@router.get(
    "/my-orders",
    response_model=list[OrderResponse],
    summary="List my orders",
)
async def list_my_orders(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)],
) -> list[OrderResponse]:
    """List the caller's orders, newest first."""
    result = await orchestrator.list_user_orders(user.user_id)
    return [order_to_response(order) for order in result.orders]


@router.get(
    "",
    response_model=OrdersListResponse,
    responses={403: {"model": ErrorResponse}},
    summary="List all orders (admin)",
)
async def list_orders(
    admin: Annotated[CurrentUser, Depends(require_admin)],
    orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)],
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100, alias="pageSize")] = 20,
    status_filter: Annotated[OrderStatus | None, Query(alias="status")] = None,
) -> OrdersListResponse:
    """List orders across all customers with pagination."""
    result = await orchestrator.list_orders(page=page, page_size=page_size, status=status_filter)
    return OrdersListResponse(
        items=[order_to_response(order) for order in result.orders],
        total=result.total,
        page=page,
        page_size=page_size,
        has_more=page * page_size < result.total,
    )


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Get order details",
)
async def get_order(
    order_id: str,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)],
) -> OrderResponse:
    """Get one order the caller owns."""
    result = await orchestrator.get_order(user.user_id, order_id, is_admin=user.is_admin)
    if not result.success or result.order is None:
        raise_for_error(result.error, "ORDER_NOT_FOUND")
    return order_to_response(result.order)


@router.post(
    "/{order_id}/cancel",
    response_model=OrderResponse,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Cancel order",
    description="Cancel an order still pending or processing. Stock is restored.",
)
async def cancel_order(
    order_id: str,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)],
    request: OrderCancelRequest | None = None,
) -> OrderResponse:
    """Cancel an order."""
    result = await orchestrator.cancel(
        user.user_id,
        order_id,
        reason=request.reason if request else None,
        is_admin=user.is_admin,
    )
    if not result.success or result.order is None:
        raise_for_error(result.error, "CANCEL_FAILED")
    return order_to_response(result.order)


@router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Update order status (admin)",
)
async def update_order_status(
    order_id: str,
    request: OrderStatusUpdateRequest,
    admin: Annotated[CurrentUser, Depends(require_admin)],
    orchestrator: Annotated[OrderOrchestrator, Depends(get_orchestrator)],
) -> OrderResponse:
    """Move an order to a new status along the state machine."""
    result = await orchestrator.update_status(
        order_id,
        request.status,
        note=request.note,
        courier=request.courier,
        tracking_number=request.tracking_number,
        admin_id=admin.user_id,
    )
    if not result.success or result.order is None:
        raise_for_error(result.error, "STATUS_UPDATE_FAILED")
    return order_to_response(result.order)
