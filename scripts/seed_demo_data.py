from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select

from ticket_checkout.config import Settings
from ticket_checkout.infrastructure.db.models import Base, Event, Ticket
from ticket_checkout.infrastructure.db.session import (
    build_engine,
    build_session_factory,
    session_scope,
)


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    ist = timezone(timedelta(hours=5, minutes=30))
    now_ist = datetime.now(ist)
    target = now_ist + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0)


EVENT_DEFS = [
    {
        "title": "Sunidhi Chauhan Live Concert",
        "type": "CONCERT",
        "date_time": _dt(days_from_now=10, hour=19, minute=30),
        "location": "Indira Gandhi Arena, New Delhi",
        "tickets": [
            {"type": "Regular", "price": Decimal("1800.00"), "quantity": 400},
            {"type": "VIP", "price": Decimal("4500.00"), "quantity": 120},
        ],
    },
    {
        "title": "Holi Festival 2026",
        "type": "FESTIVAL",
        "date_time": _dt(days_from_now=15, hour=11, minute=0),
        "location": "Jawaharlal Nehru Stadium Grounds, Delhi",
        "tickets": [
            {"type": "General", "price": Decimal("1200.00"), "quantity": 700},
            {"type": "Premium", "price": Decimal("2800.00"), "quantity": 180},
        ],
    },
]


def seed_events(db) -> None:
    for item in EVENT_DEFS:
        event = db.execute(
            select(Event).where(Event.title == item["title"])
        ).scalar_one_or_none()
        if event:
            event.type = item["type"]
            event.date_time = item["date_time"]
            event.location = item["location"]
        else:
            event = Event(
                title=item["title"],
                type=item["type"],
                date_time=item["date_time"],
                location=item["location"],
            )
            db.add(event)
            db.flush()

        for ticket_def in item["tickets"]:
            ticket = db.execute(
                select(Ticket)
                .where(Ticket.event_id == event.id)
                .where(Ticket.type == ticket_def["type"])
            ).scalar_one_or_none()
            if ticket:
                # Existing bookings keep their rows; stock is reset for the demo.
                ticket.price = ticket_def["price"]
                ticket.remaining_quantity = ticket_def["quantity"]
                continue

            db.add(
                Ticket(
                    event_id=event.id,
                    type=ticket_def["type"],
                    price=ticket_def["price"],
                    remaining_quantity=ticket_def["quantity"],
                )
            )


def main() -> None:
    settings = Settings.from_env()
    engine = build_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)

    with session_scope(build_session_factory(engine)) as db:
        seed_events(db)
    print("Seed complete: Sunidhi concert and Holi festival tickets added.")


if __name__ == "__main__":
    main()
