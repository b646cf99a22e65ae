from datetime import datetime, timezone
from decimal import Decimal
import hashlib
import hmac
import json
from unittest.mock import MagicMock

import pytest
import razorpay
from fastapi.testclient import TestClient
from sqlalchemy import select

from ticket_checkout.config import Settings
from ticket_checkout.infrastructure.db.models import Base, Event, Ticket
from ticket_checkout.infrastructure.db.session import (
    build_engine,
    build_session_factory,
    session_scope,
)
from ticket_checkout.infrastructure.payments.razorpay_gateway import RazorpayGateway
from ticket_checkout.main import create_app


KEY_ID = "rzp_test_key"
KEY_SECRET = "rzp_test_secret"
WEBHOOK_SECRET = "whsec_test"
TICKET_SECRET = "ticket-signing-secret-for-tests-0123456789"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'checkout.db'}",
        razorpay_key_id=KEY_ID,
        razorpay_key_secret=KEY_SECRET,
        razorpay_webhook_secret=WEBHOOK_SECRET,
        ticket_signing_secret=TICKET_SECRET,
        frontend_url="http://frontend.test",
        db_connect_max_retries=1,
        db_connect_retry_delay=0,
    )


def _fake_payment_link(payload):
    suffix = payload.get("reference_id", "anon")[:8]
    return {
        "id": f"plink_{suffix}",
        "short_url": f"https://rzp.io/i/{suffix}",
        "status": "created",
    }


@pytest.fixture
def razorpay_client():
    client = razorpay.Client(auth=(KEY_ID, KEY_SECRET))
    client.payment_link = MagicMock()
    client.payment_link.create.side_effect = _fake_payment_link
    client.payment = MagicMock()
    client.payment.refund.return_value = {"id": "rfnd_test_1", "status": "processed"}
    return client


@pytest.fixture
def gateway(razorpay_client):
    return RazorpayGateway(KEY_ID, KEY_SECRET, client=razorpay_client)


@pytest.fixture
def engine(settings):
    engine = build_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def client(settings, gateway, engine):
    app = create_app(settings=settings, payment_gateway=gateway)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def seed_ticket(session_factory):
    """Creates a ticket (and, unless given, its event) in a committed transaction."""

    def _seed(price="20.00", remaining=10, ticket_type="General", event_id=None):
        with session_scope(session_factory) as db:
            if event_id is None:
                event = Event(
                    title="Test Concert",
                    type="CONCERT",
                    date_time=datetime.now(timezone.utc),
                    location="Test Arena",
                )
                db.add(event)
                db.flush()
                event_id = event.id
            ticket = Ticket(
                event_id=event_id,
                type=ticket_type,
                price=Decimal(price),
                remaining_quantity=remaining,
            )
            db.add(ticket)
            db.flush()
            return event_id, ticket.id

    return _seed


@pytest.fixture
def remaining_of(session_factory):
    def _remaining(ticket_id):
        with session_scope(session_factory) as db:
            return db.execute(
                select(Ticket.remaining_quantity).where(Ticket.id == ticket_id)
            ).scalar_one()

    return _remaining


@pytest.fixture
def signed_webhook():
    """Builds a Razorpay-shaped webhook body and its signed headers."""

    def _build(
        notes,
        event_type="payment_link.paid",
        payment_id="pay_test_1",
        session_id=None,
        event_id="evt_test_1",
        secret=WEBHOOK_SECRET,
    ):
        body = json.dumps(
            {
                "entity": "event",
                "event": event_type,
                "contains": ["payment_link", "payment"],
                "payload": {
                    "payment_link": {
                        "entity": {
                            "id": session_id,
                            "status": "paid",
                            "notes": notes,
                        }
                    },
                    "payment": {
                        "entity": {
                            "id": payment_id,
                            "status": "captured",
                            "notes": [],
                        }
                    },
                },
            }
        ).encode("utf-8")
        signature = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        headers = {
            "Content-Type": "application/json",
            "X-Razorpay-Signature": signature,
        }
        if event_id:
            headers["X-Razorpay-Event-Id"] = event_id
        return body, headers

    return _build
