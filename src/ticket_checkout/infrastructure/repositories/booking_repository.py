# src/ticket_checkout/infrastructure/repositories/booking_repository.py

from decimal import Decimal

from sqlalchemy.orm import Session
from sqlalchemy import select

from ticket_checkout.infrastructure.db.models import Booking
from ticket_checkout.domain.models import BookingStatus


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        booking_id: str,
    ) -> Booking | None:

        stmt = select(Booking).where(Booking.id == booking_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_user(self, user_id: str) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.user_id == user_id)
            .order_by(Booking.created_at.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def create_completed(
        self,
        user_id: str,
        event_id: str,
        ticket_id: str,
        quantity: int,
        total_price: Decimal,
        order_id: str | None = None,
    ) -> Booking:

        booking = Booking(
            user_id=user_id,
            event_id=event_id,
            ticket_id=ticket_id,
            order_id=order_id,
            quantity=quantity,
            total_price=total_price,
            status=BookingStatus.COMPLETED,
        )

        self.db.add(booking)
        # Surface constraint violations here, inside the caller's savepoint.
        self.db.flush()
        return booking
