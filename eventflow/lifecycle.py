"""Availability state machine for events."""

from __future__ import annotations

from datetime import datetime

from .errors import ValidationError
from .models import Availability, Visibility

TERMINAL_REQUESTS = frozenset({Availability.CANCELLED, Availability.ARCHIVED})


def next_availability(
    current: Availability,
    requested: Availability | None,
    new_date: datetime,
    now: datetime,
) -> Availability:
    """Return the availability an event should hold after an edit.

    Rules, first match wins:

    * an explicit CANCELLED or ARCHIVED request is applied as-is;
    * an explicit PUBLISHED request needs a date after ``now``;
    * a date at or before ``now`` completes the event;
    * a future date on a COMPLETED event republishes it;
    * otherwise the current value is kept.

    A requested COMPLETED is treated as no request, so the date decides.
    """
    if requested in TERMINAL_REQUESTS:
        return requested
    if requested == Availability.PUBLISHED:
        if new_date <= now:
            raise ValidationError(
                "PUBLISH_REQUIRES_FUTURE_DATE",
                "Cannot publish an event with a past date",
            )
        return Availability.PUBLISHED
    if new_date <= now:
        return Availability.COMPLETED
    if current == Availability.COMPLETED:
        return Availability.PUBLISHED
    return current


def initial_availability(
    visibility: Visibility,
    requested: Availability | None,
    date: datetime,
    now: datetime,
) -> Availability:
    """Availability for a newly created event.

    Public events start PUBLISHED and private ones COMPLETED, then the same
    date rules as an edit apply.
    """
    start = (
        Availability.PUBLISHED
        if visibility == Visibility.PUBLIC
        else Availability.COMPLETED
    )
    return next_availability(start, requested, date, now)
