"""Capacity rules for events and RSVP responses."""

from __future__ import annotations

from .errors import ConflictError, ValidationError
from .models import GuestStatus


def check_capacity(requested_capacity: int | None, current_yes_count: int) -> None:
    """Validate a capacity change against confirmed attendance.

    ``None`` means the capacity is unset or unlimited and always passes.
    """
    if requested_capacity is None:
        return
    if requested_capacity <= 0:
        raise ValidationError("INVALID_CAPACITY", "Capacity must be greater than 0")
    if requested_capacity < current_yes_count:
        raise ConflictError(
            "CAPACITY_BELOW_CONFIRMED",
            f"Cannot reduce capacity below current attendance ({current_yes_count})",
        )


def is_full(capacity: int | None, current_yes_count: int) -> bool:
    return capacity is not None and current_yes_count >= capacity


def admit_response(
    requested: GuestStatus,
    *,
    previous: GuestStatus,
    capacity: int | None,
    current_yes_count: int,
    waitlist_enabled: bool,
) -> GuestStatus:
    """Return the status a guest ends up with after responding.

    A move to YES on a full event lands on the waitlist when the event has
    one; otherwise it is refused. Guests already counted as YES keep it.
    """
    if requested != GuestStatus.YES or previous == GuestStatus.YES:
        return requested
    if not is_full(capacity, current_yes_count):
        return GuestStatus.YES
    if waitlist_enabled:
        return GuestStatus.WAITLISTED
    raise ConflictError("EVENT_FULL", "This event has reached its capacity.")
