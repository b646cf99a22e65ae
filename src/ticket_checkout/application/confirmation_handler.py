from dataclasses import dataclass, field
import json
import logging

from sqlalchemy.orm import Session

from ticket_checkout.application.booking_finalizer import BookingFinalizer, FinalizationResult
from ticket_checkout.domain.exceptions import MalformedMetadataError, WebhookSignatureError
from ticket_checkout.domain.models import CartLineItem, WebhookOutcome
from ticket_checkout.domain.state_machine import OrderStateMachine, OrderStatus
from ticket_checkout.infrastructure.db.models import PendingOrder
from ticket_checkout.infrastructure.payments.gateway import PaymentGateway, WebhookEvent
from ticket_checkout.infrastructure.repositories.order_repository import OrderRepository
from ticket_checkout.infrastructure.repositories.outbox_repository import OutboxRepository
from ticket_checkout.infrastructure.repositories.webhook_event_repository import WebhookEventRepository


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderMetadata:
    order_id: str
    user_id: str
    event_id: str
    items: list[CartLineItem] | None = None


@dataclass
class WebhookResult:
    outcome: WebhookOutcome
    order_id: str | None = None
    results: list[FinalizationResult] = field(default_factory=list)


def parse_order_metadata(metadata: dict) -> OrderMetadata:
    """
    Reads the order reference echoed back by the provider.
    The item list is optional: it is only cross-checked against the stored order.
    """
    if not isinstance(metadata, dict):
        raise MalformedMetadataError("Metadata is not a mapping")

    values = {}
    for key in ("order_id", "user_id", "event_id"):
        value = metadata.get(key)
        if not isinstance(value, str) or not value.strip():
            raise MalformedMetadataError(f"Metadata field missing: {key}")
        values[key] = value

    raw_items = metadata.get("items")
    items = None
    if raw_items is not None:
        try:
            decoded = json.loads(raw_items) if isinstance(raw_items, str) else raw_items
        except ValueError as exc:
            raise MalformedMetadataError("Metadata items are not valid JSON") from exc
        if not isinstance(decoded, list) or not decoded:
            raise MalformedMetadataError("Metadata items must be a non-empty list")

        items = []
        for entry in decoded:
            if not isinstance(entry, dict):
                raise MalformedMetadataError("Metadata item is not an object")
            ticket_id = entry.get("ticket_id")
            quantity = entry.get("quantity")
            if (
                not isinstance(ticket_id, str)
                or not ticket_id
                or isinstance(quantity, bool)
                or not isinstance(quantity, int)
                or quantity <= 0
            ):
                raise MalformedMetadataError("Metadata item is malformed")
            items.append(CartLineItem(ticket_id=ticket_id, quantity=quantity))

    return OrderMetadata(items=items, **values)


class PaymentConfirmationHandler:
    """
    Consumes one signed, at-least-once delivered payment webhook.

    Deliveries are de-duplicated by the provider event id before anything
    is written. Line items are finalized from the persisted pending order;
    per-item failures become failed transactions, never delivery failures.
    """

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        webhook_secret: str,
        finalizer: BookingFinalizer | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self.webhook_secret = webhook_secret
        self.finalizer = finalizer or BookingFinalizer(db)
        self.order_repository = OrderRepository(db)
        self.webhook_repository = WebhookEventRepository(db)
        self.outbox_repository = OutboxRepository(db)

    def handle(
        self,
        raw_body: bytes,
        signature: str | None,
        event_id: str | None = None,
    ) -> WebhookResult:
        try:
            event = self.gateway.verify_and_parse(
                raw_body,
                signature or "",
                self.webhook_secret,
                event_id=event_id,
            )
        except WebhookSignatureError as exc:
            logger.warning("Rejected webhook delivery: %s", exc)
            return WebhookResult(outcome=WebhookOutcome.INVALID_SIGNATURE)

        if event.type != self.gateway.completed_event_type:
            logger.info("Ignoring webhook event %s of type %s", event.id, event.type)
            return WebhookResult(outcome=WebhookOutcome.IGNORED)

        provider = self.gateway.provider_name
        if self.webhook_repository.get(provider, event.id):
            logger.info("Duplicate webhook delivery %s", event.id)
            return WebhookResult(outcome=WebhookOutcome.DUPLICATE)

        try:
            metadata = parse_order_metadata(event.metadata)
            order = self._load_order(metadata, event)
        except MalformedMetadataError as exc:
            logger.error(
                "Webhook %s carries unusable order metadata: %s. metadata=%s",
                event.id,
                exc,
                event.metadata,
            )
            self.webhook_repository.try_record(
                provider=provider,
                event_id=event.id,
                event_type=event.type,
                payload_hash=event.payload_hash,
                status="MALFORMED_METADATA",
            )
            return WebhookResult(outcome=WebhookOutcome.MALFORMED_METADATA)

        claimed = self.webhook_repository.try_record(
            provider=provider,
            event_id=event.id,
            event_type=event.type,
            payload_hash=event.payload_hash,
            status="PROCESSED",
            order_id=order.id,
        )
        if claimed is None:
            logger.info("Delivery %s for order %s was claimed concurrently", event.id, order.id)
            return WebhookResult(outcome=WebhookOutcome.DUPLICATE, order_id=order.id)
        if order.status == OrderStatus.SESSION_FAILED:
            logger.error(
                "Payment %s received for order %s whose payment session failed; no bookings issued",
                event.payment_id,
                order.id,
            )
            return WebhookResult(outcome=WebhookOutcome.DUPLICATE, order_id=order.id)
        if order.status != OrderStatus.PENDING:
            logger.info(
                "Order %s already finalized; delivery %s is a duplicate",
                order.id,
                event.id,
            )
            return WebhookResult(outcome=WebhookOutcome.DUPLICATE, order_id=order.id)

        # Ticket rows are locked in id order so concurrent orders cannot deadlock.
        line_items = sorted(
            self.order_repository.line_items(order),
            key=lambda item: item.ticket_id,
        )
        results = [
            self.finalizer.finalize(
                user_id=order.user_id,
                event_id=order.event_id,
                ticket_id=item.ticket_id,
                quantity=item.quantity,
                order_id=order.id,
                provider_payment_id=event.payment_id,
            )
            for item in line_items
        ]

        completed = sum(1 for result in results if result.succeeded)
        closing_status = OrderStateMachine.fulfillment_status(completed, len(results))
        OrderStateMachine.validate_transition(order.status, closing_status)
        self.order_repository.update_status(order, closing_status)

        self.outbox_repository.add_event(
            aggregate_type="order",
            aggregate_id=order.id,
            event_type="ORDER_FINALIZED",
            payload={
                "order_id": order.id,
                "user_id": order.user_id,
                "event_id": order.event_id,
                "status": closing_status.value,
                "payment_id": event.payment_id,
                "lines": [
                    {
                        "ticket_id": result.ticket_id,
                        "quantity": result.quantity,
                        "outcome": result.outcome.value,
                        "booking_id": result.booking.id if result.booking else None,
                        "transaction_id": result.transaction.id if result.transaction else None,
                    }
                    for result in results
                ],
            },
            dedupe_key=f"order:{order.id}:finalized",
        )
        self.db.flush()

        if completed < len(results):
            logger.error(
                "Order %s finalized with failures: %s of %s line items booked",
                order.id,
                completed,
                len(results),
            )
        else:
            logger.info("Order %s fulfilled (%s line items)", order.id, completed)

        return WebhookResult(
            outcome=WebhookOutcome.PROCESSED,
            order_id=order.id,
            results=results,
        )

    def _load_order(self, metadata: OrderMetadata, event: WebhookEvent) -> PendingOrder:
        order = self.order_repository.lock_order(metadata.order_id)
        if order is None:
            raise MalformedMetadataError(f"Unknown order {metadata.order_id}")
        if order.user_id != metadata.user_id or order.event_id != metadata.event_id:
            raise MalformedMetadataError(f"Metadata does not match order {order.id}")
        if event.session_id and order.provider_session_id and event.session_id != order.provider_session_id:
            raise MalformedMetadataError(f"Payment session does not match order {order.id}")
        if metadata.items is not None and metadata.items != self.order_repository.line_items(order):
            raise MalformedMetadataError(f"Metadata items do not match order {order.id}")
        return order
