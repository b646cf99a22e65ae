from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ticket_checkout.api.dependencies import get_db, get_ticket_signer
from ticket_checkout.api.schemas.schemas import (
    TicketValidationRequest,
    TicketValidationResponse,
    ValidatedBookingResponse,
)
from ticket_checkout.application.ticket_codes import TicketCodeSigner, TicketValidationService


router = APIRouter(prefix="/tickets", tags=["tickets"])


@router.post("/validate", response_model=TicketValidationResponse)
def validate_ticket(
    request: TicketValidationRequest,
    db: Session = Depends(get_db),
    ticket_signer: TicketCodeSigner = Depends(get_ticket_signer),
):
    result = TicketValidationService(db, ticket_signer).validate(request.code)

    booking = None
    if result.is_valid:
        booking = ValidatedBookingResponse(
            id=result.booking.id,
            event_title=result.event.title if result.event else None,
            event_date=result.event.date_time if result.event else None,
            ticket_type=result.ticket.type if result.ticket else None,
            quantity=result.booking.quantity,
            status=result.booking.status.value,
        )
    return TicketValidationResponse(
        is_valid=result.is_valid,
        reason=result.reason,
        booking=booking,
    )
