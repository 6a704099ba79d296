"""Development helpers for populating fake users, events and reports."""

from __future__ import annotations

import random
from datetime import datetime, timedelta

from faker import Faker
from sqlalchemy.orm import Session

from . import crud, operations
from .database import get_session
from .errors import ServiceError
from .models import Event, GuestStatus, ReportReason, User, Visibility
from .storage import init_db
from .utils import utcnow

_event_types = [
    "Mixer",
    "Hangout",
    "Workshop",
    "Book Club",
    "Field Trip",
    "Meet & Greet",
    "Dinner",
    "Hackathon",
]
_guest_statuses = [
    GuestStatus.YES,
    GuestStatus.YES,
    GuestStatus.MAYBE,
    GuestStatus.NO,
    GuestStatus.PENDING,
]
_report_reasons = list(ReportReason)


def seed_fake_data(
    *,
    user_count: int = 8,
    max_events_per_user: int = 2,
    max_guests_per_event: int = 4,
    report_count: int = 5,
    private_percentage: int = 20,
) -> dict[str, int]:
    """Populate the database with synthetic users, events, guests and reports."""
    if user_count < 1:
        raise ValueError("user_count must be >= 1")
    if max_events_per_user < 0:
        raise ValueError("max_events_per_user must be >= 0")
    if max_guests_per_event < 0:
        raise ValueError("max_guests_per_event must be >= 0")
    if report_count < 0:
        raise ValueError("report_count must be >= 0")
    if not 0 <= private_percentage <= 100:
        raise ValueError("private_percentage must be between 0 and 100")

    init_db()
    fake = Faker()
    stats = {"users": 0, "events": 0, "guests": 0, "reports": 0}

    with get_session() as session:
        users = [_create_user(session, fake) for _ in range(user_count)]
        stats["users"] = len(users)
        events: list[Event] = []
        for user in users:
            for _ in range(random.randint(0, max_events_per_user)):
                event = _create_event(
                    session, fake, owner=user, private_percentage=private_percentage
                )
                events.append(event)
                stats["guests"] += _create_guests(
                    session, fake, event, max_guests_per_event
                )
        stats["events"] = len(events)
        stats["reports"] = _file_reports(session, fake, users, events, report_count)

    return stats


def _create_user(session: Session, fake: Faker) -> User:
    for _ in range(20):
        email = fake.unique.email()
        if crud.get_user_by_email(session, email):
            continue
        return crud.create_user(session, email=email, name=fake.name_nonbinary())
    raise RuntimeError("Failed to create a unique user email")


def _create_event(
    session: Session, fake: Faker, *, owner: User, private_percentage: int
) -> Event:
    is_private = random.randint(1, 100) <= private_percentage
    capacity = random.choice([None, None, 10, 25, 50])
    return operations.create_event(
        session,
        caller_id=owner.id,
        title=f"{fake.city()} {random.choice(_event_types)}",
        description="\n\n".join(fake.paragraphs(nb=2)),
        location=fake.address().replace("\n", ", "),
        date=_random_date(),
        visibility=Visibility.PRIVATE if is_private else Visibility.PUBLIC,
        capacity=capacity,
        waitlist_enabled=capacity is not None and random.random() < 0.5,
    )


def _random_date() -> datetime:
    day_offset = random.randint(-7, 45)
    minute_offset = random.randint(0, 23 * 60)
    return utcnow() + timedelta(days=day_offset, minutes=minute_offset)


def _create_guests(session: Session, fake: Faker, event: Event, max_guests: int) -> int:
    if max_guests <= 0:
        return 0
    total = random.randint(0, max_guests)
    for _ in range(total):
        status = random.choice(_guest_statuses)
        if status == GuestStatus.YES and event.capacity is not None:
            if crud.count_yes_guests(session, event.id) >= event.capacity:
                status = GuestStatus.MAYBE
        guest = crud.add_guest(
            session,
            event=event,
            email=fake.unique.email(),
            name=fake.name_nonbinary(),
            status=status,
        )
        if status != GuestStatus.PENDING:
            guest.responded_at = utcnow()
    return total


def _file_reports(
    session: Session,
    fake: Faker,
    users: list[User],
    events: list[Event],
    total: int,
) -> int:
    created = 0
    if not events or len(users) < 2:
        return created
    for _ in range(total * 3):
        if created >= total:
            break
        event = random.choice(events)
        reporter = random.choice(users)
        try:
            operations.file_report(
                session,
                event_id=event.id,
                reporter_id=reporter.id,
                reason=random.choice(_report_reasons),
                details=fake.sentence() if random.random() < 0.5 else None,
            )
        except ServiceError:
            # Self and duplicate reports are expected when picking at random.
            continue
        created += 1
    return created
