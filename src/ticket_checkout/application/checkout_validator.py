from collections.abc import Sequence

from sqlalchemy.orm import Session

from ticket_checkout.domain.exceptions import (
    EmptyCartError,
    InsufficientStockError,
    TicketEventMismatchError,
    TicketNotFoundError,
)
from ticket_checkout.domain.models import CartLineItem, PricedLineItem, ValidatedCart
from ticket_checkout.infrastructure.repositories.ticket_repository import TicketRepository


class CheckoutValidator:
    """
    Read-only cart validation against live stock.

    Stock checks here are advisory: the authoritative check happens again
    when the payment is finalized. Prices come from the ticket rows only.
    """

    def __init__(self, db: Session, ticket_repository: TicketRepository | None = None):
        self.ticket_repository = ticket_repository or TicketRepository(db)

    def validate(self, event_id: str, items: Sequence[CartLineItem]) -> ValidatedCart:
        if not event_id or not items:
            raise EmptyCartError("Invalid payload")

        merged = self.merge_items(items)
        tickets = self.ticket_repository.get_many(merged.keys())

        line_items = []
        for ticket_id, quantity in merged.items():
            ticket = tickets.get(ticket_id)
            if ticket is None:
                raise TicketNotFoundError(ticket_id)
            if ticket.event_id != event_id:
                raise TicketEventMismatchError(ticket_id, event_id)
            if ticket.remaining_quantity < quantity:
                raise InsufficientStockError(
                    ticket_id=ticket_id,
                    requested=quantity,
                    available=ticket.remaining_quantity,
                )
            line_items.append(
                PricedLineItem(
                    ticket_id=ticket.id,
                    ticket_type=ticket.type,
                    quantity=quantity,
                    unit_price=ticket.price,
                )
            )

        return ValidatedCart(event_id=event_id, line_items=line_items)

    @staticmethod
    def merge_items(items: Sequence[CartLineItem]) -> dict[str, int]:
        """Sums quantities per ticket id, preserving first-seen order."""
        merged: dict[str, int] = {}
        for item in items:
            quantity = item.quantity
            if (
                not item.ticket_id
                or isinstance(quantity, bool)
                or not isinstance(quantity, int)
                or quantity <= 0
            ):
                raise EmptyCartError("Invalid item in cart")
            merged[item.ticket_id] = merged.get(item.ticket_id, 0) + quantity
        return merged
