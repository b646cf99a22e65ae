import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from ticket_checkout.domain.exceptions import (
    CheckoutValidationError,
    InvalidStateTransitionError,
    PaymentProviderError,
    RefundNotAllowedError,
    TicketCheckoutError,
    TransactionNotFoundError,
)


logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[TicketCheckoutError], int]] = [
    (CheckoutValidationError, status.HTTP_400_BAD_REQUEST),
    (TransactionNotFoundError, status.HTTP_404_NOT_FOUND),
    (RefundNotAllowedError, status.HTTP_409_CONFLICT),
    (InvalidStateTransitionError, status.HTTP_409_CONFLICT),
    (PaymentProviderError, status.HTTP_502_BAD_GATEWAY),
]


def status_for(exc: TicketCheckoutError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def domain_error_handler(request: Request, exc: TicketCheckoutError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("Request %s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("Request %s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"message": str(exc)})


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("Invalid payload for %s %s: %s", request.method, request.url.path, exc.errors())
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": "Invalid payload"},
    )


EXCEPTION_HANDLERS = {
    TicketCheckoutError: domain_error_handler,
    HTTPException: http_error_handler,
    RequestValidationError: validation_error_handler,
}


def register_exception_handlers(app: FastAPI) -> None:
    for exception_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exception_class, handler)
