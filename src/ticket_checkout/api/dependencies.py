from fastapi import HTTPException, Request, status
from sqlalchemy.orm import Session

from ticket_checkout.application.ticket_codes import TicketCodeSigner
from ticket_checkout.config import Settings
from ticket_checkout.infrastructure.payments.gateway import PaymentGateway


def get_db(request: Request):
    db: Session = request.app.state.session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_payment_gateway(request: Request) -> PaymentGateway:
    return request.app.state.payment_gateway


def get_current_user_id(request: Request) -> str:
    """
    The user id is asserted by the upstream identity layer in a trusted header.
    """
    header = request.app.state.settings.identity_header
    user_id = (request.headers.get(header) or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return user_id


def get_ticket_signer(request: Request) -> TicketCodeSigner:
    return request.app.state.ticket_signer
