from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ticket_checkout.api.dependencies import (
    get_current_user_id,
    get_db,
    get_payment_gateway,
    get_settings,
    get_ticket_signer,
)
from ticket_checkout.api.schemas.schemas import (
    CheckoutRequest,
    CheckoutResponse,
    FinalizationLineResponse,
    PaginationResponse,
    RefundRequest,
    TransactionHistoryResponse,
    TransactionResponse,
    TransactionSummaryResponse,
    WebhookResponse,
)
from ticket_checkout.application.booking_finalizer import BookingFinalizer
from ticket_checkout.application.checkout_validator import CheckoutValidator
from ticket_checkout.application.confirmation_handler import PaymentConfirmationHandler
from ticket_checkout.application.payment_session import PaymentSessionInitiator
from ticket_checkout.application.ticket_codes import TicketCodeSigner
from ticket_checkout.application.transaction_service import RefundService, TransactionHistoryService
from ticket_checkout.config import Settings
from ticket_checkout.domain.exceptions import PaymentProviderError
from ticket_checkout.domain.models import (
    CartLineItem,
    TransactionStatus,
    TransactionType,
    WebhookOutcome,
)
from ticket_checkout.infrastructure.db.models import Transaction
from ticket_checkout.infrastructure.payments.gateway import PaymentGateway


router = APIRouter(prefix="/payments", tags=["payments"])


async def read_raw_body(request: Request) -> bytes:
    return await request.body()


def _transaction_response(transaction: Transaction) -> TransactionResponse:
    return TransactionResponse(
        id=transaction.id,
        user_id=transaction.user_id,
        event_id=transaction.event_id,
        ticket_id=transaction.ticket_id,
        order_id=transaction.order_id,
        amount=transaction.amount,
        status=transaction.status.value,
        type=transaction.type.value,
        reference_id=transaction.reference_id,
        failure_reason=transaction.failure_reason,
        created_at=transaction.created_at,
    )


@router.post("/checkout", response_model=CheckoutResponse)
def checkout(
    request: CheckoutRequest,
    http_request: Request,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    settings: Settings = Depends(get_settings),
):
    cart = [
        CartLineItem(ticket_id=item.ticket_id, quantity=item.quantity)
        for item in request.items
    ]
    validated = CheckoutValidator(db).validate(request.event_id, cart)

    origin = http_request.headers.get("origin") or settings.frontend_url
    initiator = PaymentSessionInitiator(db, gateway, settings.currency)
    try:
        redirect = initiator.create_session(
            user_id=user_id,
            event_id=validated.event_id,
            line_items=validated.line_items,
            return_origin=origin,
        )
    except PaymentProviderError as exc:
        # Returned rather than raised so the SESSION_FAILED order is committed.
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"message": str(exc)},
        )

    return CheckoutResponse(url=redirect.url, order_id=redirect.order_id)


@router.post("/webhook", response_model=WebhookResponse)
def payment_webhook(
    request: Request,
    raw_body: bytes = Depends(read_raw_body),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    settings: Settings = Depends(get_settings),
    ticket_signer: TicketCodeSigner = Depends(get_ticket_signer),
):
    handler = PaymentConfirmationHandler(
        db=db,
        gateway=gateway,
        webhook_secret=settings.razorpay_webhook_secret,
        finalizer=BookingFinalizer(db, code_signer=ticket_signer),
    )
    result = handler.handle(
        raw_body,
        request.headers.get(gateway.signature_header),
        event_id=request.headers.get(gateway.event_id_header),
    )

    if result.outcome == WebhookOutcome.INVALID_SIGNATURE:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"message": "Invalid signature"},
        )

    return WebhookResponse(
        status=result.outcome.value,
        order_id=result.order_id,
        results=[
            FinalizationLineResponse(
                ticket_id=line.ticket_id,
                quantity=line.quantity,
                outcome=line.outcome.value,
                booking_id=line.booking.id if line.booking else None,
                transaction_id=line.transaction.id if line.transaction else None,
            )
            for line in result.results
        ],
    )


@router.post("/refund", response_model=TransactionResponse)
def refund_transaction(
    request: RefundRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    refund = RefundService(db, gateway).refund(user_id, request.transaction_id)
    return _transaction_response(refund)


@router.get("/history", response_model=TransactionHistoryResponse)
def transaction_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status_filter: TransactionStatus | None = Query(None, alias="status"),
    transaction_type: TransactionType | None = Query(None, alias="transactionType"),
    start_date: datetime | None = Query(None, alias="startDate"),
    end_date: datetime | None = Query(None, alias="endDate"),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    history = TransactionHistoryService(db).list_for_user(
        user_id=user_id,
        page=page,
        limit=limit,
        status=status_filter,
        transaction_type=transaction_type,
        start_date=start_date,
        end_date=end_date,
    )
    return TransactionHistoryResponse(
        transactions=[_transaction_response(tx) for tx in history["transactions"]],
        pagination=PaginationResponse(**history["pagination"]),
        summary=TransactionSummaryResponse(**history["summary"]),
    )
