from datetime import datetime, timedelta, timezone

import jwt
import pytest

from ticket_checkout.application.booking_finalizer import BookingFinalizer
from ticket_checkout.application.ticket_codes import TicketCodeSigner, TicketValidationService
from ticket_checkout.domain.models import BookingStatus


@pytest.fixture
def signer(settings):
    return TicketCodeSigner(settings.ticket_signing_secret)


@pytest.fixture
def booked(db, seed_ticket, signer):
    event_id, ticket_id = seed_ticket(price="20.00", remaining=5, ticket_type="VIP")
    result = BookingFinalizer(db, code_signer=signer).finalize("user-1", event_id, ticket_id, 2)
    return result.booking


def test_finalizer_stamps_booking_with_signed_code(booked, signer):
    claims = signer.decode(booked.qr_code)

    assert claims["tid"] == booked.id
    assert claims["uid"] == "user-1"
    assert claims["tkid"] == booked.ticket_id
    assert claims["qty"] == 2
    assert claims["exp"] - claims["iat"] == 24 * 3600


def test_finalizer_without_signer_issues_no_code(db, seed_ticket):
    event_id, ticket_id = seed_ticket(remaining=5)

    result = BookingFinalizer(db).finalize("user-1", event_id, ticket_id, 1)

    assert result.booking.qr_code is None


def test_valid_code_returns_booking_details(db, booked, signer):
    result = TicketValidationService(db, signer).validate(booked.qr_code)

    assert result.is_valid
    assert result.booking.id == booked.id
    assert result.event.title == "Test Concert"
    assert result.ticket.type == "VIP"


@pytest.mark.parametrize("code", [None, "", "   "])
def test_missing_code(db, signer, code):
    result = TicketValidationService(db, signer).validate(code)

    assert not result.is_valid
    assert result.reason == "No QR code provided"


@pytest.mark.parametrize("code", ["not-a-token", "a.b.c"])
def test_garbage_code_is_rejected(db, signer, code):
    result = TicketValidationService(db, signer).validate(code)

    assert result.reason == "Invalid ticket signature"


def test_code_signed_with_another_secret_is_rejected(db, booked, signer):
    forged = TicketCodeSigner("some-other-secret-that-is-long-enough-0123").issue(booked)

    result = TicketValidationService(db, signer).validate(forged)

    assert not result.is_valid
    assert result.reason == "Invalid ticket signature"


def test_expired_code_is_rejected(db, booked, signer):
    stale = signer.issue(booked, issued_at=datetime.now(timezone.utc) - timedelta(hours=25))
    booked.qr_code = stale
    db.flush()

    result = TicketValidationService(db, signer).validate(stale)

    assert not result.is_valid
    assert result.reason == "Ticket has expired"


def test_code_not_stored_on_booking_is_rejected(db, booked, signer):
    # Correctly signed, but not the code the booking was issued with.
    reissued = signer.issue(booked, issued_at=datetime.now(timezone.utc) - timedelta(minutes=5))

    result = TicketValidationService(db, signer).validate(reissued)

    assert not result.is_valid
    assert result.reason == "Booking not found"


def test_code_for_unknown_booking_is_rejected(db, signer):
    code = jwt.encode(
        {
            "tid": "missing",
            "uid": "user-1",
            "eid": "event-1",
            "tkid": "ticket-1",
            "qty": 1,
            "exp": datetime.now(timezone.utc) + timedelta(hours=1),
        },
        signer.secret,
        algorithm="HS256",
    )

    result = TicketValidationService(db, signer).validate(code)

    assert result.reason == "Booking not found"


def test_inactive_booking_is_rejected(db, booked, signer):
    booked.status = BookingStatus.FAILED
    db.flush()

    result = TicketValidationService(db, signer).validate(booked.qr_code)

    assert not result.is_valid
    assert result.reason == "Booking is not active"
