import json
import logging

from sqlalchemy.orm import Session

from ticket_checkout.domain.exceptions import PaymentProviderError
from ticket_checkout.domain.models import (
    CartLineItem,
    CheckoutRedirect,
    PricedLineItem,
    serialize_cart,
    to_minor_units,
)
from ticket_checkout.domain.state_machine import OrderStateMachine, OrderStatus
from ticket_checkout.infrastructure.payments.gateway import GatewayLineItem, PaymentGateway
from ticket_checkout.infrastructure.repositories.order_repository import OrderRepository


logger = logging.getLogger(__name__)


class PaymentSessionInitiator:
    """Opens a hosted payment session for an already validated cart."""

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        currency: str,
        order_repository: OrderRepository | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self.currency = currency
        self.order_repository = order_repository or OrderRepository(db)

    def create_session(
        self,
        user_id: str,
        event_id: str,
        line_items: list[PricedLineItem],
        return_origin: str,
    ) -> CheckoutRedirect:
        cart = [
            CartLineItem(ticket_id=item.ticket_id, quantity=item.quantity)
            for item in line_items
        ]
        order = self.order_repository.create_pending(
            user_id=user_id,
            event_id=event_id,
            items=cart,
            amount_total=sum(item.total for item in line_items),
            currency=self.currency,
        )

        origin = return_origin.rstrip("/")
        metadata = {
            "order_id": order.id,
            "user_id": user_id,
            "event_id": event_id,
            # Ticket ids and quantities only; prices are re-read at finalization.
            "items": json.dumps(serialize_cart(cart), separators=(",", ":")),
        }

        try:
            session = self.gateway.create_checkout_session(
                line_items=[
                    GatewayLineItem(
                        name=f"{item.ticket_type} - {item.ticket_id}",
                        unit_amount=to_minor_units(item.unit_price),
                        quantity=item.quantity,
                    )
                    for item in line_items
                ],
                metadata=metadata,
                success_url=f"{origin}/wallet?success=1",
                cancel_url=f"{origin}/events/{event_id}",
                currency=self.currency,
                reference_id=order.id,
            )
        except PaymentProviderError:
            logger.exception(
                "Payment session creation failed. order_id=%s user_id=%s event_id=%s",
                order.id,
                user_id,
                event_id,
            )
            self._transition(order, OrderStatus.SESSION_FAILED)
            self.db.flush()
            raise

        order.provider_session_id = session.id
        self.db.flush()
        logger.info(
            "Payment session opened. order_id=%s session_id=%s amount=%s %s",
            order.id,
            session.id,
            order.amount_total,
            self.currency,
        )
        return CheckoutRedirect(order_id=order.id, url=session.url)

    def _transition(self, order, to_status: OrderStatus) -> None:
        OrderStateMachine.validate_transition(order.status, to_status)
        self.order_repository.update_status(order, to_status)
