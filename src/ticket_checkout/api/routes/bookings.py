from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ticket_checkout.api.dependencies import get_current_user_id, get_db
from ticket_checkout.api.schemas.schemas import BookingResponse
from ticket_checkout.infrastructure.repositories.booking_repository import BookingRepository


router = APIRouter(tags=["bookings"])


@router.get("/bookings", response_model=list[BookingResponse])
def list_my_bookings(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    bookings = BookingRepository(db).list_for_user(user_id)
    return [
        BookingResponse(
            id=booking.id,
            event_id=booking.event_id,
            ticket_id=booking.ticket_id,
            order_id=booking.order_id,
            quantity=booking.quantity,
            total_price=booking.total_price,
            status=booking.status.value,
            qr_code=booking.qr_code,
            created_at=booking.created_at,
        )
        for booking in bookings
    ]
