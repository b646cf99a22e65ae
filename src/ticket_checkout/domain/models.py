# src/ticket_checkout/domain/models.py

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum


class BookingStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class TransactionStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class TransactionType(str, Enum):
    PAYMENT = "payment"
    REFUND = "refund"


class FinalizationOutcome(str, Enum):
    COMPLETED = "completed"
    TICKET_MISSING = "ticket_missing"
    INSUFFICIENT_STOCK = "insufficient_stock"
    INVENTORY_UPDATE_FAILED = "inventory_update_failed"
    BOOKING_CREATION_FAILED = "booking_creation_failed"


class WebhookOutcome(str, Enum):
    INVALID_SIGNATURE = "invalid_signature"
    IGNORED = "ignored"
    DUPLICATE = "duplicate"
    MALFORMED_METADATA = "malformed_metadata"
    PROCESSED = "processed"


@dataclass(frozen=True)
class CartLineItem:
    ticket_id: str
    quantity: int


@dataclass(frozen=True)
class PricedLineItem:
    ticket_id: str
    ticket_type: str
    quantity: int
    unit_price: Decimal

    @property
    def total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class ValidatedCart:
    event_id: str
    line_items: list[PricedLineItem] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((item.total for item in self.line_items), Decimal("0"))


@dataclass(frozen=True)
class CheckoutRedirect:
    order_id: str
    url: str


def to_minor_units(amount: Decimal) -> int:
    """Converts a currency amount to integer cents/paise, rounding half up."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def serialize_cart(items: list[CartLineItem]) -> list[dict]:
    return [
        {"ticket_id": item.ticket_id, "quantity": item.quantity}
        for item in items
    ]
