"""CRUD helpers for users, events, guests, reports and penalties."""

from __future__ import annotations

from math import ceil
from typing import Any, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .errors import ConflictError
from .models import (
    Availability,
    Event,
    Guest,
    GuestStatus,
    Penalty,
    Report,
    ReportStatus,
    Role,
    User,
    Visibility,
)
from .utils import generate_api_token, normalize_email


def create_user(
    session: Session,
    *,
    email: str,
    name: str,
    role: Role = Role.USER,
) -> User:
    normalized = normalize_email(email)
    if not normalized:
        raise ValueError("Email is required")
    if get_user_by_email(session, normalized):
        raise ConflictError("EMAIL_TAKEN", f"A user with email {normalized} exists")
    user = User(
        email=normalized,
        name=(name or "").strip() or normalized,
        role=role,
        api_token=generate_api_token(),
    )
    session.add(user)
    session.flush()
    return user


def get_user_by_email(session: Session, email: str) -> User | None:
    stmt = select(User).where(User.email == normalize_email(email))
    return session.scalars(stmt).first()


def get_user_by_token(session: Session, token: str | None) -> User | None:
    if not token:
        return None
    stmt = select(User).where(User.api_token == token)
    return session.scalars(stmt).first()


def rotate_api_token(session: Session, user: User) -> str:
    user.api_token = generate_api_token()
    session.add(user)
    session.flush()
    return user.api_token


def set_role(session: Session, user: User, role: Role) -> User:
    user.role = role
    session.add(user)
    session.flush()
    return user


def lock_row(session: Session, model, entity_id: str):
    """Load a row for update, refreshing any copy already in the session."""
    stmt = (
        select(model)
        .where(model.id == entity_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return session.scalars(stmt).first()


def count_yes_guests(session: Session, event_id: str) -> int:
    stmt = (
        select(func.count())
        .select_from(Guest)
        .where(Guest.event_id == event_id, Guest.status == GuestStatus.YES)
    )
    return session.scalar(stmt) or 0


def count_pending_reports(session: Session, event_id: str) -> int:
    stmt = (
        select(func.count())
        .select_from(Report)
        .where(Report.event_id == event_id, Report.status == ReportStatus.PENDING)
    )
    return session.scalar(stmt) or 0


def has_reported(session: Session, event_id: str, user_id: str) -> bool:
    stmt = select(Report.id).where(
        Report.event_id == event_id, Report.reported_by == user_id
    )
    return session.scalars(stmt).first() is not None


def get_guest_by_email(session: Session, event_id: str, email: str) -> Guest | None:
    stmt = select(Guest).where(
        Guest.event_id == event_id, Guest.email == normalize_email(email)
    )
    return session.scalars(stmt).first()


def add_guest(
    session: Session,
    *,
    event: Event,
    email: str,
    name: str | None = None,
    status: GuestStatus = GuestStatus.PENDING,
) -> Guest:
    guest = Guest(
        event=event,
        email=normalize_email(email),
        name=(name or "").strip() or None,
        status=status,
    )
    session.add(guest)
    session.flush()
    return guest


def _build_pagination(*, page: int, per_page: int, total: int) -> dict[str, Any]:
    total_pages = max(1, ceil(total / per_page)) if per_page else 1
    page = min(max(page, 1), total_pages)
    return {
        "page": page,
        "per_page": per_page,
        "total": total,
        "total_pages": total_pages,
        "has_prev": page > 1,
        "has_next": page < total_pages,
    }


def list_public_events(
    session: Session, *, page: int = 1, per_page: int = 20
) -> tuple[Sequence[Event], dict[str, Any]]:
    filters = [
        Event.visibility == Visibility.PUBLIC,
        Event.availability == Availability.PUBLISHED,
        Event.is_hidden.is_(False),
    ]
    total = session.scalar(select(func.count()).select_from(Event).where(*filters)) or 0
    pagination = _build_pagination(page=page, per_page=per_page, total=total)
    offset = (pagination["page"] - 1) * per_page
    stmt = (
        select(Event)
        .where(*filters)
        .order_by(Event.date.asc())
        .offset(offset)
        .limit(per_page)
    )
    return session.scalars(stmt).all(), pagination


def list_owned_events(session: Session, owner_id: str) -> Sequence[Event]:
    stmt = select(Event).where(Event.owner_id == owner_id).order_by(Event.date.asc())
    return session.scalars(stmt).all()


def list_invited_events(session: Session, email: str) -> Sequence[Event]:
    stmt = (
        select(Event)
        .join(Guest, Guest.event_id == Event.id)
        .where(Guest.email == normalize_email(email), Event.is_hidden.is_(False))
        .order_by(Event.date.asc())
    )
    return session.scalars(stmt).all()


def list_reports(
    session: Session,
    *,
    status: ReportStatus | None = None,
    reporter_id: str | None = None,
    limit: int | None = None,
) -> Sequence[Report]:
    stmt = select(Report).order_by(Report.created_at.desc())
    if status is not None:
        stmt = stmt.where(Report.status == status)
    if reporter_id is not None:
        stmt = stmt.where(Report.reported_by == reporter_id)
    if limit and limit > 0:
        stmt = stmt.limit(limit)
    return session.scalars(stmt).all()


def list_user_penalties(session: Session, user_id: str) -> Sequence[Penalty]:
    stmt = (
        select(Penalty)
        .where(Penalty.user_id == user_id)
        .order_by(Penalty.created_at.desc())
    )
    return session.scalars(stmt).all()


def list_banned_users(session: Session, *, limit: int | None = None) -> Sequence[User]:
    stmt = select(User).where(User.is_banned.is_(True)).order_by(User.banned_at.desc())
    if limit and limit > 0:
        stmt = stmt.limit(limit)
    return session.scalars(stmt).all()


def moderation_stats(session: Session) -> dict[str, int]:
    def _count(model, *conditions) -> int:
        stmt = select(func.count()).select_from(model)
        if conditions:
            stmt = stmt.where(*conditions)
        return session.scalar(stmt) or 0

    return {
        "pending_reports": _count(Report, Report.status == ReportStatus.PENDING),
        "total_reports": _count(Report),
        "banned_users": _count(User, User.is_banned.is_(True)),
        "hidden_events": _count(Event, Event.is_hidden.is_(True)),
        "active_penalties": _count(Penalty, Penalty.is_active.is_(True)),
    }
