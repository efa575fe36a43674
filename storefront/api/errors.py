"""Domain error to HTTP response mapping.

Every error response has the same body:
``{"error_code", "message", "details", "request_id"}``.
"""

from typing import Any, NoReturn

import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from storefront.domain.exceptions import (
    CheckoutSessionError,
    DomainError,
    GatewayError,
    GatewayUnavailableError,
    InvalidTransitionError,
    NotAuthorizedError,
    NotFoundError,
    OrderNotCancellableError,
    PaymentError,
    PaymentNotVerifiedError,
    SignatureMismatchError,
    StockUnavailableError,
    ValidationError,
)
from storefront.domain.repositories import ConcurrencyConflictError

logger = structlog.get_logger()

# Checked in order; the first matching class wins
_STATUS_BY_ERROR: list[tuple[type[DomainError], int]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (NotAuthorizedError, status.HTTP_403_FORBIDDEN),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (StockUnavailableError, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (OrderNotCancellableError, status.HTTP_409_CONFLICT),
    (CheckoutSessionError, status.HTTP_409_CONFLICT),
    (PaymentNotVerifiedError, status.HTTP_402_PAYMENT_REQUIRED),
    (PaymentError, status.HTTP_400_BAD_REQUEST),
    (GatewayError, status.HTTP_502_BAD_GATEWAY),
]

SIGNATURE_FAILURE_MESSAGE = "Payment verification failed, please try again"


def status_for(error: DomainError) -> int:
    """HTTP status for a domain error."""
    if isinstance(error, GatewayUnavailableError) and error.timed_out:
        return status.HTTP_504_GATEWAY_TIMEOUT
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status_code
    return status.HTTP_400_BAD_REQUEST


def error_body(error: DomainError) -> dict[str, Any]:
    """Client-facing error body for a domain error.

    Signature failures get a generic message and no details.
    """
    if isinstance(error, SignatureMismatchError):
        return {"error_code": error.error_code, "message": SIGNATURE_FAILURE_MESSAGE, "details": {}}
    return {"error_code": error.error_code, "message": error.message, "details": error.details}


def raise_for_error(error: DomainError | None, default_code: str = "REQUEST_FAILED") -> NoReturn:
    """Raise the HTTPException that reports a failed service result.

    Args:
        error: The error carried by the result.
        default_code: Error code used when the result carries no error.

    Raises:
        HTTPException: Always.
    """
    if error is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": default_code, "message": "Request failed", "details": {}},
        )
    raise HTTPException(status_code=status_for(error), detail=error_body(error))


# ============================================================================
# Exception Handlers
# ============================================================================


def _response(request: Request, status_code: int, body: dict[str, Any]) -> JSONResponse:
    content = dict(body)
    content["request_id"] = getattr(request.state, "request_id", None)
    return JSONResponse(status_code=status_code, content=content)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions with consistent format."""
    detail = exc.detail
    if isinstance(detail, dict):
        body = {
            "error_code": detail.get("error_code", "ERROR"),
            "message": detail.get("message", str(detail)),
            "details": detail.get("details", {}),
        }
    else:
        body = {"error_code": "ERROR", "message": str(detail), "details": {}}
    return JSONResponse(
        status_code=exc.status_code,
        content={**body, "request_id": getattr(request.state, "request_id", None)},
        headers=getattr(exc, "headers", None),
    )


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Handle domain errors raised straight out of a handler."""
    return _response(request, status_for(exc), error_body(exc))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report request body validation failures as VALIDATION_ERROR."""
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    return _response(
        request,
        status.HTTP_400_BAD_REQUEST,
        {"error_code": "VALIDATION_ERROR", "message": "Request validation failed", "details": {"errors": errors}},
    )


async def conflict_handler(request: Request, exc: ConcurrencyConflictError) -> JSONResponse:
    """Report an update that kept losing optimistic concurrency races."""
    logger.warning("Concurrent modification", path=request.url.path, error=str(exc))
    return _response(
        request,
        status.HTTP_409_CONFLICT,
        {
            "error_code": "CONCURRENT_MODIFICATION",
            "message": "The resource was modified concurrently, please retry",
            "details": {},
        },
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions with consistent format."""
    logger.exception(
        "Unhandled exception in handler",
        path=request.url.path,
        method=request.method,
        error=str(exc),
    )
    return _response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {"error_code": "INTERNAL_ERROR", "message": "An internal error occurred", "details": {}},
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register every exception handler on the application."""
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(ConcurrencyConflictError, conflict_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
