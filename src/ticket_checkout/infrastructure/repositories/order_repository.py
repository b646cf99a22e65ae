# src/ticket_checkout/infrastructure/repositories/order_repository.py

from decimal import Decimal

from sqlalchemy.orm import Session
from sqlalchemy import select

from ticket_checkout.infrastructure.db.models import PendingOrder
from ticket_checkout.domain.models import CartLineItem, serialize_cart
from ticket_checkout.domain.state_machine import OrderStatus


class OrderRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, order_id: str) -> PendingOrder | None:
        stmt = select(PendingOrder).where(PendingOrder.id == order_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def lock_order(self, order_id: str) -> PendingOrder | None:
        stmt = (
            select(PendingOrder)
            .where(PendingOrder.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def create_pending(
        self,
        user_id: str,
        event_id: str,
        items: list[CartLineItem],
        amount_total: Decimal,
        currency: str,
    ) -> PendingOrder:

        order = PendingOrder(
            user_id=user_id,
            event_id=event_id,
            items=serialize_cart(items),
            amount_total=amount_total,
            currency=currency,
            status=OrderStatus.PENDING,
        )
        self.db.add(order)
        self.db.flush()
        return order

    def update_status(
        self,
        order: PendingOrder,
        new_status: OrderStatus,
    ) -> None:

        order.status = new_status

    @staticmethod
    def line_items(order: PendingOrder) -> list[CartLineItem]:
        return [
            CartLineItem(ticket_id=item["ticket_id"], quantity=int(item["quantity"]))
            for item in order.items
        ]
