from dataclasses import dataclass
from decimal import Decimal
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ticket_checkout.application.ticket_codes import TicketCodeSigner
from ticket_checkout.domain.exceptions import InventoryCompensationError
from ticket_checkout.domain.models import FinalizationOutcome, TransactionStatus
from ticket_checkout.infrastructure.db.models import Booking, Transaction
from ticket_checkout.infrastructure.repositories.booking_repository import BookingRepository
from ticket_checkout.infrastructure.repositories.ticket_repository import TicketRepository
from ticket_checkout.infrastructure.repositories.transaction_repository import TransactionRepository


logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass
class FinalizationResult:
    ticket_id: str
    quantity: int
    outcome: FinalizationOutcome
    booking: Booking | None = None
    transaction: Transaction | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == FinalizationOutcome.COMPLETED


class BookingFinalizer:
    """
    Turns one paid cart line item into a booking.

    Runs inside the caller's transaction. The stock decrement and the
    booking insert share a savepoint, so a failed insert rolls the
    decrement back without touching other line items. With a code signer,
    each booking is stamped with its signed QR ticket code before commit.
    """

    def __init__(
        self,
        db: Session,
        ticket_repository: TicketRepository | None = None,
        booking_repository: BookingRepository | None = None,
        transaction_repository: TransactionRepository | None = None,
        code_signer: TicketCodeSigner | None = None,
    ):
        self.db = db
        self.ticket_repository = ticket_repository or TicketRepository(db)
        self.booking_repository = booking_repository or BookingRepository(db)
        self.transaction_repository = transaction_repository or TransactionRepository(db)
        self.code_signer = code_signer

    def finalize(
        self,
        user_id: str,
        event_id: str,
        ticket_id: str,
        quantity: int,
        order_id: str | None = None,
        provider_payment_id: str | None = None,
    ) -> FinalizationResult:
        context = dict(
            user_id=user_id,
            event_id=event_id,
            ticket_id=ticket_id,
            quantity=quantity,
            order_id=order_id,
            provider_payment_id=provider_payment_id,
        )

        savepoint = self.db.begin_nested()
        try:
            ticket = self.ticket_repository.lock_ticket(ticket_id)
        except SQLAlchemyError:
            logger.exception("Failed to read ticket %s during finalization", ticket_id)
            self._compensate(savepoint, ticket_id, quantity)
            return self._fail(FinalizationOutcome.INVENTORY_UPDATE_FAILED, ZERO, **context)

        if ticket is None:
            savepoint.rollback()
            logger.error("Ticket missing during finalization. ticket_id=%s order_id=%s", ticket_id, order_id)
            return self._fail(FinalizationOutcome.TICKET_MISSING, ZERO, **context)

        unit_price = ticket.price
        try:
            applied = self.ticket_repository.decrement_stock(ticket_id, quantity)
        except SQLAlchemyError:
            logger.exception("Failed to decrement stock for ticket %s", ticket_id)
            self._compensate(savepoint, ticket_id, quantity)
            return self._fail(FinalizationOutcome.INVENTORY_UPDATE_FAILED, ZERO, **context)

        if not applied:
            savepoint.rollback()
            logger.error(
                "Insufficient stock during finalization. ticket_id=%s requested=%s order_id=%s",
                ticket_id,
                quantity,
                order_id,
            )
            return self._fail(FinalizationOutcome.INSUFFICIENT_STOCK, ZERO, **context)

        total_price = unit_price * quantity
        try:
            booking = self.booking_repository.create_completed(
                user_id=user_id,
                event_id=event_id,
                ticket_id=ticket_id,
                quantity=quantity,
                total_price=total_price,
                order_id=order_id,
            )
            if self.code_signer is not None:
                booking.qr_code = self.code_signer.issue(booking)
                self.db.flush()
        except SQLAlchemyError:
            logger.exception(
                "Booking insert failed, restoring stock. ticket_id=%s quantity=%s order_id=%s",
                ticket_id,
                quantity,
                order_id,
            )
            self._compensate(savepoint, ticket_id, quantity)
            return self._fail(FinalizationOutcome.BOOKING_CREATION_FAILED, total_price, **context)

        savepoint.commit()

        transaction = None
        try:
            with self.db.begin_nested():
                transaction = self.transaction_repository.record(
                    user_id=user_id,
                    event_id=event_id,
                    ticket_id=ticket_id,
                    order_id=order_id,
                    amount=total_price,
                    status=TransactionStatus.COMPLETED,
                    provider_payment_id=provider_payment_id,
                )
        except SQLAlchemyError:
            # The booking stands; only the audit row is missing.
            logger.exception(
                "Booking %s created but its transaction record failed. ticket_id=%s order_id=%s",
                booking.id,
                ticket_id,
                order_id,
            )

        logger.info(
            "Booking completed. booking_id=%s ticket_id=%s quantity=%s total=%s",
            booking.id,
            ticket_id,
            quantity,
            total_price,
        )
        return FinalizationResult(
            ticket_id=ticket_id,
            quantity=quantity,
            outcome=FinalizationOutcome.COMPLETED,
            booking=booking,
            transaction=transaction,
        )

    def _compensate(self, savepoint, ticket_id: str, quantity: int) -> None:
        try:
            savepoint.rollback()
        except SQLAlchemyError as exc:
            logger.critical(
                "Stock compensation failed; inventory may be inconsistent. ticket_id=%s quantity=%s",
                ticket_id,
                quantity,
            )
            raise InventoryCompensationError(
                f"Could not restore {quantity} unit(s) of ticket {ticket_id}"
            ) from exc

    def _fail(
        self,
        outcome: FinalizationOutcome,
        amount: Decimal,
        user_id: str,
        event_id: str,
        ticket_id: str,
        quantity: int,
        order_id: str | None,
        provider_payment_id: str | None,
    ) -> FinalizationResult:
        transaction = None
        try:
            with self.db.begin_nested():
                transaction = self.transaction_repository.record(
                    user_id=user_id,
                    event_id=event_id,
                    ticket_id=ticket_id,
                    order_id=order_id,
                    amount=amount,
                    status=TransactionStatus.FAILED,
                    provider_payment_id=provider_payment_id,
                    failure_reason=outcome.value,
                )
        except SQLAlchemyError:
            logger.exception(
                "Failed transaction record could not be written. ticket_id=%s order_id=%s outcome=%s",
                ticket_id,
                order_id,
                outcome.value,
            )
        return FinalizationResult(
            ticket_id=ticket_id,
            quantity=quantity,
            outcome=outcome,
            transaction=transaction,
        )
