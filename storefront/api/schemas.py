"""API schemas for the storefront API.

Pydantic models for request/response validation and serialization.
JSON bodies use camelCase keys; snake_case names are accepted on input
too. Money is always an integer amount in minor units plus a currency.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from storefront.domain.state_machines import CheckoutStep, OrderStatus, PaymentStatus
from storefront.domain.value_objects import ProductCategory, Size


class ApiModel(BaseModel):
    """Base model with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Common Schemas
# ============================================================================


class PriceSchema(ApiModel):
    """Price representation."""

    amount: int = Field(..., description="Amount in smallest currency unit (paise, cents)")
    currency: str = Field(..., description="ISO 4217 currency code")


class ErrorResponse(BaseModel):
    """Standard error response.

    All API errors follow this format for consistency.
    """

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, Any] = Field(default_factory=dict, description="Additional error context")
    request_id: str | None = Field(default=None, description="Request ID for correlation")


class PaginatedResponse(ApiModel):
    """Base paginated response."""

    total: int = Field(..., description="Total number of items")
    page: int = Field(..., description="Current page number")
    page_size: int = Field(..., description="Items per page")
    has_more: bool = Field(..., description="Whether there are more pages")


class ShippingAddressSchema(ApiModel):
    """Shipping address."""

    full_name: str = Field(..., min_length=1, description="Recipient name")
    email: str = Field(..., description="Recipient email for notifications")
    phone: str | None = Field(default=None, description="Contact phone")
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class BuyNowItemSchema(ApiModel):
    """A single item bought directly, bypassing the cart."""

    product_ref: str = Field(..., min_length=1, description="Catalog product reference")
    quantity: int = Field(default=1, description="Units to buy")
    size: Size | None = Field(default=None, description="Size, for sized products")


class PaymentProofSchema(ApiModel):
    """Payment proof handed back by the gateway checkout."""

    provider_order_id: str = Field(..., min_length=1, description="Gateway intent id")
    provider_payment_id: str = Field(..., min_length=1, description="Gateway payment id")
    signature: str = Field(..., min_length=1, description="HMAC signature of the proof")
    amount: int | None = Field(default=None, description="Captured amount, if reported")
    method: str | None = Field(default=None, description="Payment method, if reported")


# ============================================================================
# Draft & Payment Schemas
# ============================================================================


class OrderLineSchema(ApiModel):
    """A priced line of a draft or order."""

    kind: str = Field(..., description="'sized' or 'unsized'")
    product_ref: str
    name: str
    category: ProductCategory
    size: Size | None = None
    quantity: int
    unit_price: PriceSchema
    line_total: PriceSchema


class DraftSchema(ApiModel):
    """Priced snapshot of the selected items."""

    draft_id: str
    source: str
    lines: list[OrderLineSchema]
    subtotal: PriceSchema
    item_count: int
    created_at: datetime


class PaymentIntentSchema(ApiModel):
    """Gateway payment intent."""

    intent_id: str
    amount: PriceSchema
    status: str
    receipt: str | None = None


class CreatePaymentRequest(ApiModel):
    """Request to open a payment intent for the cart or a buy-now item."""

    shipping_address: ShippingAddressSchema
    buy_now: BuyNowItemSchema | None = Field(default=None, description="Buy this item instead of the cart")
    quantity_override: int | None = Field(default=None, description="Quantity for the buy-now item")


class CreatePaymentResponse(ApiModel):
    """Opened intent plus the draft it was opened for."""

    key_id: str = Field(..., description="Public gateway key for the client checkout widget")
    intent: PaymentIntentSchema
    draft: DraftSchema


class VerifyPaymentRequest(PaymentProofSchema):
    """Proof submitted through the client redirect."""


class VerifyPaymentResponse(ApiModel):
    """Result of a successful verification."""

    success: bool = True
    intent_id: str
    payment_id: str
    amount: PriceSchema


# ============================================================================
# Order Schemas
# ============================================================================


class PaymentInfoSchema(ApiModel):
    """Payment facts recorded on an order."""

    method: str
    status: PaymentStatus
    provider_order_id: str
    provider_payment_id: str
    amount_paid: PriceSchema


class OrderStatusHistorySchema(ApiModel):
    """One status transition."""

    status: OrderStatus
    timestamp: datetime
    note: str | None = None


class OrderResponse(ApiModel):
    """Full order."""

    id: str
    order_number: str
    user_id: str
    status: OrderStatus
    lines: list[OrderLineSchema]
    item_count: int
    total_amount: PriceSchema
    shipping_address: ShippingAddressSchema
    payment_info: PaymentInfoSchema
    status_history: list[OrderStatusHistorySchema]
    courier: str | None = None
    tracking_number: str | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None
    can_cancel: bool
    created_at: datetime
    updated_at: datetime


class OrdersListResponse(PaginatedResponse):
    """Paginated list of orders."""

    items: list[OrderResponse]


class CreateOrderRequest(ApiModel):
    """Commit the order for a checkout attempt.

    ``payment`` may carry the proof when it was not verified separately.
    """

    intent_id: str = Field(..., min_length=1)
    payment: PaymentProofSchema | None = None


class OrderCancelRequest(ApiModel):
    """Request to cancel an order."""

    reason: str | None = Field(default=None, max_length=500)


class OrderStatusUpdateRequest(ApiModel):
    """Admin request to move an order along its lifecycle."""

    status: OrderStatus
    note: str | None = Field(default=None, max_length=500)
    courier: str | None = None
    tracking_number: str | None = None


# ============================================================================
# Checkout Session Schemas
# ============================================================================


class CheckoutStartRequest(ApiModel):
    """Start a checkout session for the cart or one item."""

    buy_now: BuyNowItemSchema | None = None
    quantity_override: int | None = None


class CheckoutAddressRequest(ApiModel):
    """Shipping address for the session."""

    shipping_address: ShippingAddressSchema


class CheckoutSessionResponse(ApiModel):
    """Checkout wizard state."""

    session_id: str
    step: CheckoutStep
    buy_now: BuyNowItemSchema | None = None
    quantity_override: int | None = None
    shipping_address: ShippingAddressSchema | None = None
    draft: DraftSchema | None = None
    intent: PaymentIntentSchema | None = None
    order: OrderResponse | None = None
    last_activity_at: datetime


class CheckoutResetResponse(ApiModel):
    """Acknowledgement of a session reset."""

    reset: bool = True
