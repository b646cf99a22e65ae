# src/ticket_checkout/infrastructure/repositories/ticket_repository.py

from collections.abc import Iterable

from sqlalchemy.orm import Session
from sqlalchemy import select, update

from ticket_checkout.infrastructure.db.models import Ticket


class TicketRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_many(self, ticket_ids: Iterable[str]) -> dict[str, Ticket]:
        ids = list(set(ticket_ids))
        if not ids:
            return {}
        stmt = select(Ticket).where(Ticket.id.in_(ids))
        return {ticket.id: ticket for ticket in self.db.execute(stmt).scalars()}

    def lock_ticket(self, ticket_id: str) -> Ticket | None:
        """
        SELECT ... FOR UPDATE, reading the live row.
        Serializes finalizations of the same ticket on PostgreSQL.
        """

        stmt = (
            select(Ticket)
            .where(Ticket.id == ticket_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def decrement_stock(self, ticket_id: str, quantity: int) -> bool:
        """
        Atomic decrement-with-floor.
        Returns False, without writing, when stock would go negative.
        """

        stmt = (
            update(Ticket)
            .where(Ticket.id == ticket_id)
            .where(Ticket.remaining_quantity >= quantity)
            .values(remaining_quantity=Ticket.remaining_quantity - quantity)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        return result.rowcount == 1
