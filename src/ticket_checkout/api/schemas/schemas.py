from datetime import datetime
from decimal import Decimal

from pydantic import AliasChoices, BaseModel, Field


class CheckoutItem(BaseModel):
    ticket_id: str = Field(validation_alias=AliasChoices("ticketId", "ticket_id"))
    quantity: int


class CheckoutRequest(BaseModel):
    event_id: str = Field(validation_alias=AliasChoices("eventId", "event_id"))
    items: list[CheckoutItem] = Field(default_factory=list)


class CheckoutResponse(BaseModel):
    url: str
    order_id: str


class FinalizationLineResponse(BaseModel):
    ticket_id: str
    quantity: int
    outcome: str
    booking_id: str | None = None
    transaction_id: str | None = None


class WebhookResponse(BaseModel):
    status: str
    order_id: str | None = None
    results: list[FinalizationLineResponse] = Field(default_factory=list)


class RefundRequest(BaseModel):
    transaction_id: str = Field(
        validation_alias=AliasChoices("transactionId", "transaction_id")
    )


class TransactionResponse(BaseModel):
    id: str
    user_id: str
    event_id: str
    ticket_id: str | None
    order_id: str | None
    amount: Decimal
    status: str
    type: str
    reference_id: str | None
    failure_reason: str | None
    created_at: datetime


class PaginationResponse(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class TransactionSummaryResponse(BaseModel):
    total: int
    total_amount: Decimal
    by_status: dict[str, int]
    by_type: dict[str, int]


class TransactionHistoryResponse(BaseModel):
    transactions: list[TransactionResponse]
    pagination: PaginationResponse
    summary: TransactionSummaryResponse


class BookingResponse(BaseModel):
    id: str
    event_id: str
    ticket_id: str
    order_id: str | None
    quantity: int
    total_price: Decimal
    status: str
    qr_code: str | None = None
    created_at: datetime


class OutboxEventResponse(BaseModel):
    id: str
    aggregate_type: str
    aggregate_id: str
    event_type: str
    status: str
    attempts: int
    created_at: str


class TicketValidationRequest(BaseModel):
    code: str | None = Field(default=None, validation_alias=AliasChoices("qrCode", "qr_code", "code"))


class ValidatedBookingResponse(BaseModel):
    id: str
    event_title: str | None = None
    event_date: datetime | None = None
    ticket_type: str | None = None
    quantity: int
    status: str


class TicketValidationResponse(BaseModel):
    is_valid: bool
    reason: str
    booking: ValidatedBookingResponse | None = None
