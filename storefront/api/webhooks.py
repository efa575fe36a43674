"""Webhook receiver endpoints.

Provides:
- POST /webhooks/payment - receive payment gateway events
- HMAC signature verification of the raw body
- Deduplication by event id
- GET /webhooks/events/{event_id} - event processing status
"""

from datetime import datetime
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import Field
from pydantic import ValidationError as PydanticValidationError

from storefront.api.errors import raise_for_error
from storefront.api.schemas import ApiModel, ErrorResponse
from storefront.application.webhook_service import WebhookEvent, WebhookService
from storefront.dependencies import get_container
from storefront.domain.exceptions import DomainError, NotFoundError

logger = structlog.get_logger()

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


# ============================================================================
# Schemas
# ============================================================================


class WebhookPayload(ApiModel):
    """Incoming webhook payload from the payment gateway."""

    event_id: str = Field(..., min_length=1, description="Unique event identifier")
    event_type: str = Field(..., description="Event type (e.g., payment.captured)")
    created_at: datetime = Field(..., description="When the gateway emitted the event")
    data: dict[str, Any] = Field(default_factory=dict, description="Payment callback fields")


class WebhookResponse(ApiModel):
    """Response to webhook delivery."""

    success: bool = Field(..., description="Whether the event was accepted")
    event_id: str = Field(..., description="Event ID")
    status: str = Field(..., description="processed, duplicate, ignored or failed")
    message: str = Field(..., description="Status message")
    order_id: str | None = Field(default=None, description="Order created or found for the payment")
    error_code: str | None = Field(default=None, description="Error code when processing failed")


class WebhookEventStatusResponse(ApiModel):
    """Stored status of a webhook event."""

    event_id: str
    event_type: str
    status: str
    received_at: datetime
    processed_at: datetime | None = None
    error_message: str | None = None
    order_id: str | None = None


# ============================================================================
# Dependencies
# ============================================================================


def get_service() -> WebhookService:
    """Get webhook service."""
    return get_container().webhooks


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "/payment",
    response_model=WebhookResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
    },
    summary="Receive payment gateway webhook",
    description="Receive and process gateway events. The body must be signed with the webhook secret.",
)
async def receive_payment_webhook(
    request: Request,
    service: Annotated[WebhookService, Depends(get_service)],
    x_gateway_signature: Annotated[str | None, Header()] = None,
) -> WebhookResponse:
    """Receive and process a webhook from the payment gateway.

    The ``X-Gateway-Signature`` header carries ``sha256=<hex>`` of the
    raw body. Duplicate events return success with status "duplicate".

    Raises:
        HTTPException: If the signature is missing or wrong, or the body is malformed.
    """
    body = (await request.body()).decode("utf-8")

    if not service.verify_signature(body, x_gateway_signature):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error_code": "INVALID_SIGNATURE",
                "message": "Webhook signature verification failed",
                "details": {},
            },
        )

    try:
        payload = WebhookPayload.model_validate_json(body)
    except PydanticValidationError as e:
        logger.warning("Malformed webhook payload", errors=e.error_count())
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error_code": "INVALID_PAYLOAD",
                "message": "Webhook payload is malformed",
                "details": {"errors": [err["msg"] for err in e.errors()]},
            },
        ) from e

    logger.info(
        "Received payment webhook",
        event_id=payload.event_id,
        event_type=payload.event_type,
    )

    result = await service.process_event(
        WebhookEvent(
            event_id=payload.event_id,
            event_type=payload.event_type,
            created_at=payload.created_at,
            data=payload.data,
        )
    )

    # Processing failures are still acknowledged with 200; the event stays
    # FAILED and is processed again on redelivery
    return WebhookResponse(
        success=result.success,
        event_id=result.event_id,
        status=result.status.value,
        message=result.message,
        order_id=result.order_id,
        error_code=result.error_code,
    )


@router.get(
    "/events/{event_id}",
    response_model=WebhookEventStatusResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get webhook event status",
)
async def get_event_status(
    event_id: str,
    service: Annotated[WebhookService, Depends(get_service)],
) -> WebhookEventStatusResponse:
    """Look up how a webhook event was processed."""
    entry = await service.event_log.get(event_id)
    if entry is None:
        error: DomainError = NotFoundError("WebhookEvent", event_id)
        raise_for_error(error)
    return WebhookEventStatusResponse(**entry)
