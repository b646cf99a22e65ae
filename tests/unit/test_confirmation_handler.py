from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
import json
import logging

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from ticket_checkout.application.booking_finalizer import BookingFinalizer
from ticket_checkout.application.confirmation_handler import (
    PaymentConfirmationHandler,
    parse_order_metadata,
)
from ticket_checkout.domain.exceptions import MalformedMetadataError
from ticket_checkout.domain.models import (
    CartLineItem,
    FinalizationOutcome,
    TransactionStatus,
    WebhookOutcome,
)
from ticket_checkout.domain.state_machine import OrderStatus
from ticket_checkout.infrastructure.db.models import (
    Booking,
    OutboxEvent,
    PaymentWebhookEvent,
    Ticket,
    Transaction,
)
from ticket_checkout.infrastructure.db.session import session_scope
from ticket_checkout.infrastructure.repositories.order_repository import OrderRepository
from ticket_checkout.infrastructure.repositories.ticket_repository import TicketRepository
from ticket_checkout.infrastructure.repositories.transaction_repository import TransactionRepository


def _pending_order(db, user_id, event_id, items):
    order = OrderRepository(db).create_pending(
        user_id=user_id,
        event_id=event_id,
        items=items,
        amount_total=Decimal("0"),
        currency="INR",
    )
    order.provider_session_id = "plink_abc"
    db.flush()
    return order


def _notes(order, items=None):
    notes = {
        "order_id": order.id,
        "user_id": order.user_id,
        "event_id": order.event_id,
    }
    if items is not None:
        notes["items"] = json.dumps(items)
    return notes


def _count(db, model):
    return db.execute(select(func.count()).select_from(model)).scalar_one()


@pytest.fixture
def handle(gateway, settings):
    def _handle(db, body, headers):
        handler = PaymentConfirmationHandler(db, gateway, settings.razorpay_webhook_secret)
        return handler.handle(
            body,
            headers.get("X-Razorpay-Signature"),
            event_id=headers.get("X-Razorpay-Event-Id"),
        )

    return _handle


def test_paid_webhook_finalizes_order(db, handle, seed_ticket, signed_webhook):
    event_id, ticket_id = seed_ticket(price="20.00", remaining=5)
    order = _pending_order(db, "user-1", event_id, [CartLineItem(ticket_id, 2)])

    body, headers = signed_webhook(
        _notes(order, [{"ticket_id": ticket_id, "quantity": 2}]),
        session_id="plink_abc",
    )
    result = handle(db, body, headers)

    assert result.outcome == WebhookOutcome.PROCESSED
    assert result.order_id == order.id
    assert [line.outcome for line in result.results] == [FinalizationOutcome.COMPLETED]
    assert result.results[0].booking.order_id == order.id
    assert result.results[0].transaction.provider_payment_id == "pay_test_1"
    assert order.status == OrderStatus.FULFILLED
    assert _count(db, OutboxEvent) == 1


def test_partial_fulfillment(db, handle, seed_ticket, signed_webhook):
    event_id, plenty = seed_ticket(remaining=5)
    _, sold_out = seed_ticket(remaining=0, event_id=event_id)
    order = _pending_order(
        db,
        "user-1",
        event_id,
        [CartLineItem(plenty, 1), CartLineItem(sold_out, 1)],
    )

    body, headers = signed_webhook(_notes(order))
    result = handle(db, body, headers)

    assert result.outcome == WebhookOutcome.PROCESSED
    assert {line.ticket_id: line.outcome for line in result.results} == {
        plenty: FinalizationOutcome.COMPLETED,
        sold_out: FinalizationOutcome.INSUFFICIENT_STOCK,
    }
    assert order.status == OrderStatus.PARTIALLY_FULFILLED


def test_line_items_finalized_in_ticket_id_order(db, gateway, settings, seed_ticket, signed_webhook):
    event_id, first = seed_ticket(remaining=5)
    _, second = seed_ticket(remaining=5, event_id=event_id)
    _, third = seed_ticket(remaining=5, event_id=event_id)
    cart = sorted([first, second, third], reverse=True)
    order = _pending_order(db, "user-1", event_id, [CartLineItem(tid, 1) for tid in cart])

    locked = []

    class RecordingTicketRepository(TicketRepository):
        def lock_ticket(self, ticket_id):
            locked.append(ticket_id)
            return super().lock_ticket(ticket_id)

    finalizer = BookingFinalizer(db, ticket_repository=RecordingTicketRepository(db))
    body, headers = signed_webhook(_notes(order))
    result = PaymentConfirmationHandler(
        db, gateway, settings.razorpay_webhook_secret, finalizer=finalizer
    ).handle(body, headers["X-Razorpay-Signature"], event_id=headers["X-Razorpay-Event-Id"])

    assert result.outcome == WebhookOutcome.PROCESSED
    assert locked == sorted(cart)
    assert [line.ticket_id for line in result.results] == sorted(cart)


def test_unwritable_failure_record_keeps_other_lines(db, gateway, settings, seed_ticket, signed_webhook):
    event_id, plenty = seed_ticket(remaining=5)
    _, sold_out = seed_ticket(remaining=0, event_id=event_id)
    order = _pending_order(
        db,
        "user-1",
        event_id,
        [CartLineItem(plenty, 1), CartLineItem(sold_out, 1)],
    )

    class FailedRowUnwritable(TransactionRepository):
        def record(self, **kwargs):
            if kwargs["status"] == TransactionStatus.FAILED:
                raise OperationalError("INSERT INTO transactions", {}, Exception("disk I/O error"))
            return super().record(**kwargs)

    finalizer = BookingFinalizer(db, transaction_repository=FailedRowUnwritable(db))
    body, headers = signed_webhook(_notes(order))
    result = PaymentConfirmationHandler(
        db, gateway, settings.razorpay_webhook_secret, finalizer=finalizer
    ).handle(body, headers["X-Razorpay-Signature"], event_id=headers["X-Razorpay-Event-Id"])

    assert result.outcome == WebhookOutcome.PROCESSED
    by_ticket = {line.ticket_id: line for line in result.results}
    assert by_ticket[plenty].succeeded
    assert by_ticket[sold_out].outcome == FinalizationOutcome.INSUFFICIENT_STOCK
    assert by_ticket[sold_out].transaction is None
    assert _count(db, Booking) == 1
    assert db.get(Ticket, plenty).remaining_quantity == 4
    assert order.status == OrderStatus.PARTIALLY_FULFILLED


def test_payment_for_failed_session_is_logged_as_error(db, handle, seed_ticket, signed_webhook, caplog):
    event_id, ticket_id = seed_ticket(remaining=5)
    order = _pending_order(db, "user-1", event_id, [CartLineItem(ticket_id, 1)])
    OrderRepository(db).update_status(order, OrderStatus.SESSION_FAILED)
    db.flush()

    with caplog.at_level(logging.INFO, logger="ticket_checkout.application.confirmation_handler"):
        result = handle(db, *signed_webhook(_notes(order)))

    assert result.outcome == WebhookOutcome.DUPLICATE
    assert _count(db, Booking) == 0
    errors = [record for record in caplog.records if record.levelno == logging.ERROR]
    assert len(errors) == 1
    assert "payment session failed" in errors[0].getMessage()
    assert order.id in errors[0].getMessage()


def test_finalized_order_redelivery_logs_no_error(db, handle, seed_ticket, signed_webhook, caplog):
    event_id, ticket_id = seed_ticket(remaining=5)
    order = _pending_order(db, "user-1", event_id, [CartLineItem(ticket_id, 1)])
    handle(db, *signed_webhook(_notes(order), event_id="evt_a"))

    with caplog.at_level(logging.INFO, logger="ticket_checkout.application.confirmation_handler"):
        result = handle(db, *signed_webhook(_notes(order), event_id="evt_b"))

    assert result.outcome == WebhookOutcome.DUPLICATE
    assert not [record for record in caplog.records if record.levelno >= logging.ERROR]


def test_invalid_signature_mutates_nothing(db, handle, seed_ticket, signed_webhook):
    event_id, ticket_id = seed_ticket(remaining=5)
    order = _pending_order(db, "user-1", event_id, [CartLineItem(ticket_id, 1)])

    body, headers = signed_webhook(_notes(order), secret="not-the-secret")
    result = handle(db, body, headers)

    assert result.outcome == WebhookOutcome.INVALID_SIGNATURE
    assert _count(db, Booking) == 0
    assert _count(db, Transaction) == 0
    assert _count(db, PaymentWebhookEvent) == 0
    assert order.status == OrderStatus.PENDING


def test_missing_signature_rejected(db, gateway, settings, signed_webhook):
    body, _ = signed_webhook({})

    result = PaymentConfirmationHandler(
        db, gateway, settings.razorpay_webhook_secret
    ).handle(body, None)

    assert result.outcome == WebhookOutcome.INVALID_SIGNATURE


def test_other_event_types_are_ignored(db, handle, seed_ticket, signed_webhook):
    event_id, ticket_id = seed_ticket(remaining=5)
    order = _pending_order(db, "user-1", event_id, [CartLineItem(ticket_id, 1)])

    body, headers = signed_webhook(_notes(order), event_type="payment.failed")
    result = handle(db, body, headers)

    assert result.outcome == WebhookOutcome.IGNORED
    assert _count(db, Booking) == 0
    assert _count(db, PaymentWebhookEvent) == 0


def test_redelivery_is_a_duplicate(db, handle, seed_ticket, signed_webhook):
    event_id, ticket_id = seed_ticket(remaining=5)
    order = _pending_order(db, "user-1", event_id, [CartLineItem(ticket_id, 1)])
    body, headers = signed_webhook(_notes(order))

    first = handle(db, body, headers)
    second = handle(db, body, headers)

    assert first.outcome == WebhookOutcome.PROCESSED
    assert second.outcome == WebhookOutcome.DUPLICATE
    assert _count(db, Booking) == 1
    assert _count(db, Transaction) == 1


def test_new_event_id_for_finalized_order_is_a_duplicate(db, handle, seed_ticket, signed_webhook):
    event_id, ticket_id = seed_ticket(remaining=5)
    order = _pending_order(db, "user-1", event_id, [CartLineItem(ticket_id, 1)])

    handle(db, *signed_webhook(_notes(order), event_id="evt_a"))
    result = handle(db, *signed_webhook(_notes(order), event_id="evt_b"))

    assert result.outcome == WebhookOutcome.DUPLICATE
    assert _count(db, Booking) == 1


def test_body_hash_dedupes_without_event_id_header(db, handle, seed_ticket, signed_webhook):
    event_id, ticket_id = seed_ticket(remaining=5)
    order = _pending_order(db, "user-1", event_id, [CartLineItem(ticket_id, 1)])
    body, headers = signed_webhook(_notes(order), event_id=None)

    handle(db, body, headers)
    result = handle(db, body, headers)

    assert result.outcome == WebhookOutcome.DUPLICATE
    assert _count(db, Booking) == 1


@pytest.mark.parametrize(
    "tamper",
    [
        lambda notes: notes.pop("order_id"),
        lambda notes: notes.update(order_id="unknown-order"),
        lambda notes: notes.update(user_id="someone-else"),
        lambda notes: notes.update(items="{not json"),
        lambda notes: notes.update(items=json.dumps([{"ticket_id": "other", "quantity": 9}])),
    ],
)
def test_malformed_metadata_books_nothing(db, handle, seed_ticket, signed_webhook, tamper):
    event_id, ticket_id = seed_ticket(remaining=5)
    order = _pending_order(db, "user-1", event_id, [CartLineItem(ticket_id, 1)])
    notes = _notes(order)
    tamper(notes)

    result = handle(db, *signed_webhook(notes))

    assert result.outcome == WebhookOutcome.MALFORMED_METADATA
    assert _count(db, Booking) == 0
    assert _count(db, Transaction) == 0
    assert order.status == OrderStatus.PENDING
    recorded = db.execute(select(PaymentWebhookEvent)).scalar_one()
    assert recorded.status == "MALFORMED_METADATA"


def test_session_mismatch_is_malformed(db, handle, seed_ticket, signed_webhook):
    event_id, ticket_id = seed_ticket(remaining=5)
    order = _pending_order(db, "user-1", event_id, [CartLineItem(ticket_id, 1)])

    result = handle(db, *signed_webhook(_notes(order), session_id="plink_other"))

    assert result.outcome == WebhookOutcome.MALFORMED_METADATA


def test_parse_order_metadata_reads_items():
    metadata = parse_order_metadata(
        {
            "order_id": "o1",
            "user_id": "u1",
            "event_id": "e1",
            "items": '[{"ticket_id":"t1","quantity":2}]',
        }
    )

    assert metadata.items == [CartLineItem("t1", 2)]


@pytest.mark.parametrize(
    "items",
    ["[]", '[{"ticket_id":"t1","quantity":0}]', '[{"ticket_id":"t1","quantity":true}]', '["t1"]'],
)
def test_parse_order_metadata_rejects_bad_items(items):
    with pytest.raises(MalformedMetadataError):
        parse_order_metadata(
            {"order_id": "o1", "user_id": "u1", "event_id": "e1", "items": items}
        )


def test_concurrent_redeliveries_finalize_once(handle, session_factory, seed_ticket, signed_webhook):
    event_id, ticket_id = seed_ticket(remaining=5)
    with session_scope(session_factory) as db:
        order = _pending_order(db, "user-1", event_id, [CartLineItem(ticket_id, 2)])
        order_id = order.id
        notes = _notes(order)
    body, headers = signed_webhook(notes)

    def deliver(_):
        with session_scope(session_factory) as db:
            return handle(db, body, headers).outcome

    with ThreadPoolExecutor(max_workers=4) as pool:
        outcomes = list(pool.map(deliver, range(4)))

    assert outcomes.count(WebhookOutcome.PROCESSED) == 1
    assert outcomes.count(WebhookOutcome.DUPLICATE) == 3
    with session_scope(session_factory) as db:
        assert _count(db, Booking) == 1
        assert db.get(Ticket, ticket_id).remaining_quantity == 3
        assert OrderRepository(db).get_by_id(order_id).status == OrderStatus.FULFILLED
