"""Utility helpers for EventFlow."""

from __future__ import annotations

import secrets
from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def generate_api_token() -> str:
    return secrets.token_urlsafe(32)


def normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


def isoformat_or_none(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
