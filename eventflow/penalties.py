"""Penalty validation and user ban-state transitions."""

from __future__ import annotations

from datetime import datetime, timedelta

from .errors import ConflictError, ForbiddenError, ValidationError
from .models import PenaltyType, Role, User

BANNING_PENALTIES = frozenset({PenaltyType.SUSPENSION, PenaltyType.BAN})


def validate_penalty(target: User, penalty_type: PenaltyType, duration: int | None) -> None:
    if target.role == Role.ADMIN:
        raise ForbiddenError("CANNOT_PENALIZE_ADMIN", "Cannot penalize an administrator")
    if penalty_type == PenaltyType.SUSPENSION and duration is None:
        raise ValidationError(
            "DURATION_REQUIRED", "Suspension penalties require a duration in days"
        )
    if penalty_type != PenaltyType.SUSPENSION and duration is not None:
        raise ValidationError(
            "DURATION_NOT_ALLOWED",
            f"{penalty_type.value} penalties cannot have a duration",
        )


def penalty_expiry(
    penalty_type: PenaltyType, duration: int | None, now: datetime
) -> datetime | None:
    if penalty_type != PenaltyType.SUSPENSION or duration is None:
        return None
    return now + timedelta(days=duration)


def apply_ban(
    user: User, *, reason: str, until: datetime | None, now: datetime
) -> None:
    user.is_banned = True
    user.banned_at = now
    user.banned_until = until
    user.ban_reason = reason


def clear_ban(user: User) -> None:
    user.is_banned = False
    user.banned_at = None
    user.banned_until = None
    user.ban_reason = None


def ensure_banned(user: User) -> None:
    if not user.is_banned:
        raise ConflictError("NOT_BANNED", "User is not banned")


def ban_has_expired(user: User, now: datetime) -> bool:
    """Only temporary bans expire; a null ``banned_until`` is permanent."""
    return (
        user.is_banned
        and user.banned_until is not None
        and now > user.banned_until
    )


def ban_message(user: User) -> str:
    reason = user.ban_reason or "No reason provided"
    if user.banned_until is not None:
        until = user.banned_until.strftime("%Y-%m-%d %H:%M UTC")
        return f"Account suspended until {until}. Reason: {reason}"
    return f"Account permanently banned. Reason: {reason}"
