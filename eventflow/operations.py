"""Transactional operations over events, reports and penalties.

Every public function runs inside the caller's session transaction. Rows
guarding an invariant are loaded with ``with_for_update`` and counts are read
in the same transaction that writes the decision. Failures raise a
:class:`~eventflow.errors.ServiceError` before anything is written, so the
surrounding ``get_session``/``get_db`` rollback leaves no partial effect.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import crud
from .capacity import admit_response, check_capacity
from .errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from .lifecycle import initial_availability, next_availability
from .moderation import (
    AUTO_HIDE_REASON,
    BAN_HIDE_REASON,
    MANUAL_HIDE_REASON,
    can_auto_hide,
    ensure_reviewable,
    hide_event as mark_hidden,
    restore_event,
    should_auto_hide,
    should_auto_restore,
)
from .models import (
    Availability,
    Event,
    Guest,
    GuestStatus,
    HiddenBy,
    Penalty,
    PenaltyType,
    Report,
    ReportReason,
    ReportStatus,
    User,
    Visibility,
)
from .notifications import Notification, NotificationKind, queue_notification
from .penalties import (
    BANNING_PENALTIES,
    apply_ban,
    ban_has_expired,
    ban_message,
    clear_ban,
    ensure_banned,
    penalty_expiry,
    validate_penalty,
)
from .utils import normalize_email, to_naive_utc, utcnow

logger = logging.getLogger("uvicorn.error")

EDITABLE_EVENT_FIELDS = frozenset(
    {
        "title",
        "description",
        "location",
        "date",
        "visibility",
        "capacity",
        "waitlist_enabled",
        "availability",
        "cancelled_reason",
    }
)
REVIEW_DECISIONS = frozenset({ReportStatus.ACCEPTED, ReportStatus.REJECTED})
GUEST_RESPONSES = frozenset({GuestStatus.YES, GuestStatus.NO, GuestStatus.MAYBE})


# -------- access --------


def _get_user(session: Session, user_id: str, *, lock: bool = False) -> User:
    user = crud.lock_row(session, User, user_id) if lock else session.get(User, user_id)
    if not user:
        raise NotFoundError("User")
    return user


def check_access(session: Session, user_id: str, *, now: datetime | None = None) -> User:
    """Return the user if they may act, lifting an expired suspension first."""
    now = now or utcnow()
    user = _get_user(session, user_id)
    if not user.is_banned:
        return user
    if ban_has_expired(user, now):
        clear_ban(user)
        session.add(user)
        session.flush()
        logger.info("Lifted expired suspension for user %s", user.id)
        return user
    raise ForbiddenError("USER_BANNED", ban_message(user))


def require_admin(session: Session, user_id: str) -> User:
    user = _get_user(session, user_id)
    if user.is_banned:
        raise ForbiddenError("USER_BANNED", ban_message(user))
    if not user.is_admin:
        raise ForbiddenError("ADMIN_REQUIRED", "Administrator access required")
    return user


def _get_event(session: Session, event_id: str, *, lock: bool = False) -> Event:
    event = (
        crud.lock_row(session, Event, event_id) if lock else session.get(Event, event_id)
    )
    if not event:
        raise NotFoundError("Event")
    return event


def _require_owner(event: Event, user: User) -> None:
    if event.owner_id != user.id:
        raise ForbiddenError("NOT_OWNER", "Only the event owner can do that")


def can_view_event(event: Event, viewer: User | None) -> bool:
    if viewer and (viewer.is_admin or viewer.id == event.owner_id):
        return True
    if event.is_hidden:
        return False
    if event.visibility == Visibility.PUBLIC:
        return True
    if viewer is None:
        return False
    return any(guest.email == viewer.email for guest in event.guests)


def get_visible_event(session: Session, *, event_id: str, viewer: User | None) -> Event:
    """Events the viewer may not see are reported as missing."""
    event = _get_event(session, event_id)
    if not can_view_event(event, viewer):
        raise NotFoundError("Event")
    return event


def _notify_guests(
    session: Session,
    event: Event,
    *,
    kind: NotificationKind,
    title: str,
    message: str,
) -> None:
    for guest in event.guests:
        queue_notification(
            session,
            Notification(
                kind=kind,
                recipient=guest.email,
                title=title,
                message=message,
                event_id=event.id,
            ),
        )


# -------- events --------


def create_event(
    session: Session,
    *,
    caller_id: str,
    title: str,
    date: datetime,
    description: str | None = None,
    location: str | None = None,
    visibility: Visibility = Visibility.PUBLIC,
    capacity: int | None = None,
    waitlist_enabled: bool = False,
    availability: Availability | None = None,
    now: datetime | None = None,
) -> Event:
    now = now or utcnow()
    if availability == Availability.CANCELLED:
        raise ValidationError(
            "INVALID_AVAILABILITY", "New events cannot start out cancelled"
        )
    owner = check_access(session, caller_id, now=now)
    check_capacity(capacity, 0)
    date = to_naive_utc(date)
    event = Event(
        owner_id=owner.id,
        title=title.strip(),
        description=description,
        location=location,
        date=date,
        visibility=visibility,
        availability=initial_availability(visibility, availability, date, now),
        capacity=capacity,
        waitlist_enabled=waitlist_enabled,
    )
    session.add(event)
    session.flush()
    logger.debug("Created event %s (%s)", event.id, event.availability.value)
    return event


def update_event(
    session: Session,
    *,
    event_id: str,
    caller_id: str,
    changes: Mapping[str, Any],
    revision: int | None = None,
    notify_guests: bool = False,
    now: datetime | None = None,
) -> Event:
    """Apply a partial edit to an event owned by the caller.

    ``changes`` holds only the fields being set; a key mapped to ``None``
    clears nullable fields such as ``capacity``.
    """
    now = now or utcnow()
    unknown = set(changes) - EDITABLE_EVENT_FIELDS
    if unknown:
        raise ValidationError(
            "UNKNOWN_FIELDS", f"Cannot update fields: {', '.join(sorted(unknown))}"
        )
    caller = check_access(session, caller_id, now=now)
    event = _get_event(session, event_id, lock=True)
    _require_owner(event, caller)
    if revision is not None and revision != event.revision:
        raise ConflictError(
            "REVISION_MISMATCH",
            f"Event was modified (revision {event.revision}, expected {revision})",
        )

    if "capacity" in changes:
        check_capacity(changes["capacity"], crud.count_yes_guests(session, event.id))

    new_date = to_naive_utc(changes["date"]) if changes.get("date") else event.date
    previous = event.availability
    availability = next_availability(previous, changes.get("availability"), new_date, now)

    for field in ("description", "location", "cancelled_reason", "capacity"):
        if field in changes:
            setattr(event, field, changes[field])
    # Required columns ignore an explicit null.
    for field in ("title", "visibility", "waitlist_enabled"):
        if changes.get(field) is not None:
            setattr(event, field, changes[field])
    event.date = new_date
    event.availability = availability
    session.add(event)
    session.flush()

    if availability != previous:
        logger.info(
            "Event %s availability %s -> %s",
            event.id,
            previous.value,
            availability.value,
        )
    if availability == Availability.CANCELLED and previous != Availability.CANCELLED:
        reason = event.cancelled_reason or "The organizer cancelled this event."
        _notify_guests(
            session,
            event,
            kind=NotificationKind.EVENT_CANCELLED,
            title=f"{event.title} was cancelled",
            message=reason,
        )
    elif notify_guests:
        _notify_guests(
            session,
            event,
            kind=NotificationKind.EVENT_UPDATE,
            title=f"{event.title} was updated",
            message="The organizer updated the event details.",
        )
    return event


def delete_event(session: Session, *, event_id: str, caller_id: str) -> None:
    caller = check_access(session, caller_id)
    event = _get_event(session, event_id, lock=True)
    _require_owner(event, caller)
    session.delete(event)
    session.flush()


# -------- guests --------


def invite_guests(
    session: Session,
    *,
    event_id: str,
    caller_id: str,
    emails: Iterable[str],
) -> list[Guest]:
    """Add guests to an event.

    Owners may invite anyone. Other users may only add themselves, and only
    to public, published events that are not hidden. Existing guests are
    skipped.
    """
    caller = check_access(session, caller_id)
    event = _get_event(session, event_id, lock=True)
    normalized = []
    for email in emails:
        cleaned = normalize_email(email)
        if cleaned and cleaned not in normalized:
            normalized.append(cleaned)
    if not normalized:
        raise ValidationError("NO_EMAILS", "At least one email is required")

    is_owner = event.owner_id == caller.id
    if not is_owner:
        if normalized != [caller.email]:
            raise ForbiddenError("NOT_OWNER", "Only the event owner can invite guests")
        joinable = (
            event.visibility == Visibility.PUBLIC
            and event.availability == Availability.PUBLISHED
            and not event.is_hidden
        )
        if not joinable:
            raise ForbiddenError(
                "EVENT_NOT_JOINABLE", "Only public, published events can be joined"
            )

    added: list[Guest] = []
    for email in normalized:
        if crud.get_guest_by_email(session, event.id, email):
            continue
        guest = crud.add_guest(session, event=event, email=email)
        added.append(guest)
        if is_owner:
            queue_notification(
                session,
                Notification(
                    kind=NotificationKind.EVENT_INVITE,
                    recipient=email,
                    title=f"You're invited to {event.title}",
                    message=f"{caller.name} invited you to {event.title}.",
                    event_id=event.id,
                ),
            )
    return added


def respond_to_invitation(
    session: Session,
    *,
    event_id: str,
    guest_id: str,
    caller_id: str,
    status: GuestStatus | None = None,
    name: str | None = None,
    now: datetime | None = None,
) -> Guest:
    """Update a guest row.

    The invited guest changes ``status``; the owner may rename the guest. A
    move to YES is checked against capacity in this transaction, landing on
    the waitlist or failing with ``EVENT_FULL`` when no seat is left.
    """
    now = now or utcnow()
    if status is not None and status not in GUEST_RESPONSES:
        raise ValidationError("INVALID_STATUS", "Status must be YES, NO or MAYBE")
    caller = check_access(session, caller_id, now=now)
    event = _get_event(session, event_id, lock=True)
    guest = session.get(Guest, guest_id)
    if not guest or guest.event_id != event.id:
        raise NotFoundError("Guest")

    is_owner = event.owner_id == caller.id
    is_guest = guest.email == caller.email
    if not (is_owner or is_guest):
        raise ForbiddenError("NOT_INVITED", "You are not a guest of this event")
    if status is not None and not is_guest:
        raise ForbiddenError("NOT_GUEST", "Only the guest can change their response")
    if name is not None and not is_owner:
        raise ForbiddenError("NOT_OWNER", "Only the event owner can rename guests")

    if name is not None:
        guest.name = name.strip() or None
    if status is not None:
        previous = guest.status
        resolved = admit_response(
            status,
            previous=previous,
            capacity=event.capacity,
            current_yes_count=crud.count_yes_guests(session, event.id),
            waitlist_enabled=event.waitlist_enabled,
        )
        guest.status = resolved
        guest.responded_at = now
        if resolved != previous:
            queue_notification(
                session,
                Notification(
                    kind=NotificationKind.RSVP_RESPONSE,
                    recipient=event.owner.email,
                    title=f"New response for {event.title}",
                    message=f"{guest.name or guest.email} responded {resolved.value}",
                    event_id=event.id,
                ),
            )
    session.add(guest)
    session.flush()
    return guest


# -------- reports --------


def file_report(
    session: Session,
    *,
    event_id: str,
    reporter_id: str,
    reason: ReportReason,
    details: str | None = None,
    now: datetime | None = None,
) -> tuple[Report, bool]:
    """File a report and apply the auto-hide threshold.

    Returns the new report and whether pending reports now meet the
    threshold.
    """
    now = now or utcnow()
    reporter = check_access(session, reporter_id, now=now)
    event = _get_event(session, event_id, lock=True)
    if event.owner_id == reporter.id:
        raise ForbiddenError("SELF_REPORT", "You cannot report your own event")
    if crud.has_reported(session, event.id, reporter.id):
        raise ConflictError("DUPLICATE_REPORT", "You have already reported this event")

    report = Report(
        event_id=event.id,
        reported_by=reporter.id,
        reason=reason,
        details=details,
        status=ReportStatus.PENDING,
    )
    session.add(report)
    try:
        session.flush()
    except IntegrityError as exc:
        raise ConflictError(
            "DUPLICATE_REPORT", "You have already reported this event"
        ) from exc
    # Counter bump bypasses the ORM so it leaves Event.revision untouched.
    session.execute(
        update(Event)
        .where(Event.id == event.id)
        .values(report_count=Event.report_count + 1)
        .execution_options(synchronize_session="fetch")
    )

    pending = crud.count_pending_reports(session, event.id)
    auto_hidden = should_auto_hide(pending)
    if auto_hidden and can_auto_hide(event):
        mark_hidden(event, hidden_by=HiddenBy.AUTOMATIC, reason=AUTO_HIDE_REASON, now=now)
        session.flush()
        logger.info("Event %s hidden after %d pending reports", event.id, pending)
        queue_notification(
            session,
            Notification(
                kind=NotificationKind.SYSTEM,
                recipient=event.owner.email,
                title=f"{event.title} is under review",
                message="Your event was hidden while moderators review reports.",
                event_id=event.id,
            ),
        )
    return report, auto_hidden


def review_report(
    session: Session,
    *,
    report_id: str,
    reviewer_id: str,
    decision: ReportStatus,
    notes: str | None = None,
    event_id: str | None = None,
    now: datetime | None = None,
) -> Report:
    now = now or utcnow()
    if decision not in REVIEW_DECISIONS:
        raise ValidationError(
            "INVALID_DECISION", "Decision must be ACCEPTED or REJECTED"
        )
    reviewer = require_admin(session, reviewer_id)
    report = crud.lock_row(session, Report, report_id)
    if not report or (event_id is not None and report.event_id != event_id):
        raise NotFoundError("Report")
    ensure_reviewable(report)

    report.status = decision
    report.reviewed_by = reviewer.id
    report.reviewed_at = now
    report.review_notes = notes
    session.add(report)
    session.flush()

    if decision == ReportStatus.REJECTED:
        event = _get_event(session, report.event_id, lock=True)
        pending = crud.count_pending_reports(session, event.id)
        if should_auto_restore(event, decision, pending):
            restore_event(event)
            session.flush()
            logger.info(
                "Event %s restored; %d pending reports remain", event.id, pending
            )
    return report


def hide_event(
    session: Session,
    *,
    event_id: str,
    admin_id: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> Event:
    require_admin(session, admin_id)
    event = _get_event(session, event_id, lock=True)
    mark_hidden(
        event,
        hidden_by=HiddenBy.MANUAL,
        reason=(reason or "").strip() or MANUAL_HIDE_REASON,
        now=now or utcnow(),
    )
    session.flush()
    logger.info("Event %s hidden by moderator %s", event.id, admin_id)
    return event


def unhide_event(session: Session, *, event_id: str, admin_id: str) -> Event:
    require_admin(session, admin_id)
    event = _get_event(session, event_id, lock=True)
    restore_event(event)
    session.flush()
    logger.info("Event %s unhidden by moderator %s", event.id, admin_id)
    return event


# -------- penalties --------


def issue_penalty(
    session: Session,
    *,
    target_user_id: str,
    penalty_type: PenaltyType,
    reason: str,
    admin_id: str,
    duration: int | None = None,
    details: str | None = None,
    now: datetime | None = None,
) -> Penalty:
    now = now or utcnow()
    admin = require_admin(session, admin_id)
    target = _get_user(session, target_user_id, lock=True)
    validate_penalty(target, penalty_type, duration)

    expires_at = penalty_expiry(penalty_type, duration, now)
    penalty = Penalty(
        user_id=target.id,
        type=penalty_type,
        reason=reason,
        details=details,
        duration=duration,
        expires_at=expires_at,
        is_active=True,
        created_by=admin.id,
    )
    session.add(penalty)

    if penalty_type in BANNING_PENALTIES:
        apply_ban(target, reason=reason, until=expires_at, now=now)
        session.add(target)
    if penalty_type == PenaltyType.BAN:
        owned = crud.list_owned_events(session, target.id)
        for event in owned:
            mark_hidden(
                event, hidden_by=HiddenBy.BAN_CASCADE, reason=BAN_HIDE_REASON, now=now
            )
        logger.info("Banned user %s; hid %d events", target.id, len(owned))
    session.flush()

    logger.info(
        "Issued %s penalty %s to user %s", penalty_type.value, penalty.id, target.id
    )
    queue_notification(
        session,
        Notification(
            kind=NotificationKind.SYSTEM,
            recipient=target.email,
            title=f"Account {penalty_type.value.lower()}",
            message=reason,
        ),
    )
    return penalty


def unban_user(session: Session, *, target_user_id: str, admin_id: str) -> User:
    """Clear a user's ban and deactivate every active penalty they hold.

    Events hidden by a ban stay hidden.
    """
    require_admin(session, admin_id)
    target = _get_user(session, target_user_id, lock=True)
    ensure_banned(target)
    clear_ban(target)
    session.add(target)
    result = session.execute(
        update(Penalty)
        .where(Penalty.user_id == target.id, Penalty.is_active.is_(True))
        .values(is_active=False)
        .execution_options(synchronize_session="fetch")
    )
    session.flush()
    logger.info(
        "Unbanned user %s; deactivated %d penalties", target.id, result.rowcount
    )
    queue_notification(
        session,
        Notification(
            kind=NotificationKind.SYSTEM,
            recipient=target.email,
            title="Account restored",
            message="Your account restrictions have been lifted.",
        ),
    )
    return target


def moderation_stats(session: Session, *, admin_id: str) -> dict[str, int]:
    require_admin(session, admin_id)
    return crud.moderation_stats(session)
