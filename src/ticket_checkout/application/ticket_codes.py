from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging

import jwt
from sqlalchemy.orm import Session

from ticket_checkout.domain.models import BookingStatus
from ticket_checkout.infrastructure.db.models import Booking, Event, Ticket
from ticket_checkout.infrastructure.repositories.booking_repository import BookingRepository


logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


class TicketCodeSigner:
    """
    Issues and reads the signed code printed on a booking's QR ticket.

    The code is an HS256 JWT carrying the booking, user, event and ticket
    ids plus the quantity. It stops validating ttl_hours after purchase.
    """

    def __init__(self, secret: str, ttl_hours: int = 24):
        self.secret = secret
        self.ttl = timedelta(hours=ttl_hours)

    def issue(self, booking: Booking, issued_at: datetime | None = None) -> str:
        issued_at = issued_at or datetime.now(timezone.utc)
        claims = {
            "tid": booking.id,
            "uid": booking.user_id,
            "eid": booking.event_id,
            "tkid": booking.ticket_id,
            "qty": booking.quantity,
            "iat": issued_at,
            "exp": issued_at + self.ttl,
        }
        return jwt.encode(claims, self.secret, algorithm=ALGORITHM)

    def decode(self, code: str) -> dict:
        """Raises jwt.ExpiredSignatureError or another jwt.PyJWTError."""
        return jwt.decode(
            code,
            self.secret,
            algorithms=[ALGORITHM],
            options={"require": ["tid", "uid", "eid", "tkid", "qty", "exp"]},
        )


@dataclass
class TicketValidation:
    is_valid: bool
    reason: str
    booking: Booking | None = None
    event: Event | None = None
    ticket: Ticket | None = None


class TicketValidationService:

    def __init__(self, db: Session, signer: TicketCodeSigner):
        self.db = db
        self.signer = signer
        self.booking_repository = BookingRepository(db)

    def validate(self, code: str | None) -> TicketValidation:
        if not code or not code.strip():
            return TicketValidation(is_valid=False, reason="No QR code provided")

        try:
            claims = self.signer.decode(code.strip())
        except jwt.ExpiredSignatureError:
            logger.info("Rejected expired ticket code")
            return TicketValidation(is_valid=False, reason="Ticket has expired")
        except jwt.PyJWTError as exc:
            logger.warning("Rejected ticket code: %s", exc)
            return TicketValidation(is_valid=False, reason="Invalid ticket signature")

        booking = self.booking_repository.get_by_id(claims["tid"])
        if (
            booking is None
            or booking.qr_code != code.strip()
            or booking.user_id != claims["uid"]
            or booking.event_id != claims["eid"]
            or booking.ticket_id != claims["tkid"]
        ):
            logger.warning("Ticket code does not match a booking. booking_id=%s", claims["tid"])
            return TicketValidation(is_valid=False, reason="Booking not found")

        if booking.status != BookingStatus.COMPLETED:
            return TicketValidation(is_valid=False, reason="Booking is not active", booking=booking)

        return TicketValidation(
            is_valid=True,
            reason="Valid ticket",
            booking=booking,
            event=self.db.get(Event, booking.event_id),
            ticket=self.db.get(Ticket, booking.ticket_id),
        )
