# src/ticket_checkout/infrastructure/repositories/webhook_event_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ticket_checkout.infrastructure.db.models import PaymentWebhookEvent


class WebhookEventRepository:
    """Persisted idempotency ledger for provider webhook deliveries."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, provider: str, event_id: str) -> PaymentWebhookEvent | None:
        stmt = (
            select(PaymentWebhookEvent)
            .where(PaymentWebhookEvent.provider == provider)
            .where(PaymentWebhookEvent.event_id == event_id)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def try_record(
        self,
        provider: str,
        event_id: str,
        event_type: str,
        payload_hash: str,
        status: str,
        order_id: str | None = None,
    ) -> PaymentWebhookEvent | None:
        """
        Inserts the delivery under a savepoint.
        Returns None when another delivery already claimed the key.
        """

        entry = PaymentWebhookEvent(
            provider=provider,
            event_id=event_id,
            event_type=event_type,
            order_id=order_id,
            payload_hash=payload_hash,
            status=status,
        )
        try:
            with self.db.begin_nested():
                self.db.add(entry)
        except IntegrityError:
            return None
        return entry
