from __future__ import annotations

import pytest

from eventflow.capacity import admit_response, check_capacity, is_full
from eventflow.errors import ConflictError, ValidationError
from eventflow.models import GuestStatus


@pytest.mark.parametrize("capacity", [0, -1])
def test_non_positive_capacity_is_invalid(capacity):
    with pytest.raises(ValidationError) as excinfo:
        check_capacity(capacity, 0)
    assert excinfo.value.code == "INVALID_CAPACITY"


def test_capacity_below_confirmed_conflicts():
    with pytest.raises(ConflictError) as excinfo:
        check_capacity(2, 3)
    assert excinfo.value.code == "CAPACITY_BELOW_CONFIRMED"
    assert "3" in excinfo.value.message


def test_capacity_equal_to_confirmed_is_allowed():
    check_capacity(3, 3)


def test_unlimited_capacity_always_passes():
    check_capacity(None, 500)


def test_is_full():
    assert is_full(2, 2)
    assert not is_full(2, 1)
    assert not is_full(None, 1000)


def test_yes_on_full_event_without_waitlist_conflicts():
    with pytest.raises(ConflictError) as excinfo:
        admit_response(
            GuestStatus.YES,
            previous=GuestStatus.PENDING,
            capacity=1,
            current_yes_count=1,
            waitlist_enabled=False,
        )
    assert excinfo.value.code == "EVENT_FULL"


def test_yes_on_full_event_with_waitlist_is_waitlisted():
    status = admit_response(
        GuestStatus.YES,
        previous=GuestStatus.MAYBE,
        capacity=1,
        current_yes_count=1,
        waitlist_enabled=True,
    )
    assert status == GuestStatus.WAITLISTED


def test_existing_yes_guest_keeps_seat_on_full_event():
    status = admit_response(
        GuestStatus.YES,
        previous=GuestStatus.YES,
        capacity=1,
        current_yes_count=1,
        waitlist_enabled=False,
    )
    assert status == GuestStatus.YES


def test_non_yes_responses_pass_through():
    for requested in (GuestStatus.NO, GuestStatus.MAYBE):
        assert (
            admit_response(
                requested,
                previous=GuestStatus.PENDING,
                capacity=1,
                current_yes_count=5,
                waitlist_enabled=False,
            )
            == requested
        )
