from __future__ import annotations

from datetime import timedelta

import pytest

from eventflow.errors import ConflictError, ForbiddenError, ValidationError
from eventflow.models import PenaltyType, Role, User
from eventflow.penalties import (
    apply_ban,
    ban_has_expired,
    ban_message,
    clear_ban,
    ensure_banned,
    penalty_expiry,
    validate_penalty,
)
from eventflow.utils import utcnow

NOW = utcnow().replace(microsecond=0)


def _user(role: Role = Role.USER, **fields) -> User:
    values = {"is_banned": False, "banned_until": None, "ban_reason": None}
    values.update(fields)
    return User(email="someone@example.com", name="Someone", role=role, **values)


@pytest.mark.parametrize("penalty_type", list(PenaltyType))
def test_admins_cannot_be_penalized(penalty_type):
    duration = 3 if penalty_type == PenaltyType.SUSPENSION else None
    with pytest.raises(ForbiddenError) as excinfo:
        validate_penalty(_user(Role.ADMIN), penalty_type, duration)
    assert excinfo.value.code == "CANNOT_PENALIZE_ADMIN"


def test_suspension_requires_duration():
    with pytest.raises(ValidationError) as excinfo:
        validate_penalty(_user(), PenaltyType.SUSPENSION, None)
    assert excinfo.value.code == "DURATION_REQUIRED"


@pytest.mark.parametrize("penalty_type", [PenaltyType.WARNING, PenaltyType.BAN])
def test_duration_only_allowed_for_suspension(penalty_type):
    with pytest.raises(ValidationError) as excinfo:
        validate_penalty(_user(), penalty_type, 7)
    assert excinfo.value.code == "DURATION_NOT_ALLOWED"


def test_expiry_only_for_suspension():
    assert penalty_expiry(PenaltyType.SUSPENSION, 7, NOW) == NOW + timedelta(days=7)
    assert penalty_expiry(PenaltyType.BAN, None, NOW) is None
    assert penalty_expiry(PenaltyType.WARNING, None, NOW) is None


def test_apply_and_clear_ban():
    user = _user()
    apply_ban(user, reason="spam", until=None, now=NOW)
    assert user.is_banned is True
    assert user.banned_at == NOW
    assert user.banned_until is None
    assert user.ban_reason == "spam"

    clear_ban(user)
    assert user.is_banned is False
    assert user.banned_at is None
    assert user.banned_until is None
    assert user.ban_reason is None


def test_ensure_banned_rejects_active_user():
    with pytest.raises(ConflictError) as excinfo:
        ensure_banned(_user())
    assert excinfo.value.code == "NOT_BANNED"


def test_only_elapsed_temporary_bans_expire():
    elapsed = _user(is_banned=True, banned_until=NOW - timedelta(seconds=1))
    running = _user(is_banned=True, banned_until=NOW + timedelta(days=1))
    boundary = _user(is_banned=True, banned_until=NOW)
    permanent = _user(is_banned=True, banned_until=None)

    assert ban_has_expired(elapsed, NOW)
    assert not ban_has_expired(running, NOW)
    assert not ban_has_expired(boundary, NOW)
    assert not ban_has_expired(permanent, NOW + timedelta(days=3650))


def test_ban_messages():
    until = NOW + timedelta(days=2)
    suspended = _user(is_banned=True, banned_until=until, ban_reason="rude")
    banned = _user(is_banned=True, ban_reason="fraud")

    assert ban_message(suspended).startswith("Account suspended until ")
    assert ban_message(suspended).endswith("Reason: rude")
    assert ban_message(banned) == "Account permanently banned. Reason: fraud"
