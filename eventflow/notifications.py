"""Outbound notifications queued during a transaction and sent after commit."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from sqlalchemy import event
from sqlalchemy.orm import Session

from . import scheduler
from .config import settings

logger = logging.getLogger("uvicorn.error")

_OUTBOX_KEY = "eventflow_outbox"


class NotificationKind(str, enum.Enum):
    EVENT_INVITE = "EVENT_INVITE"
    EVENT_UPDATE = "EVENT_UPDATE"
    EVENT_CANCELLED = "EVENT_CANCELLED"
    RSVP_RESPONSE = "RSVP_RESPONSE"
    SYSTEM = "SYSTEM"


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    recipient: str
    title: str
    message: str
    event_id: str | None = None


def queue_notification(session: Session, notification: Notification) -> None:
    """Hold ``notification`` until the session's transaction commits."""
    session.info.setdefault(_OUTBOX_KEY, []).append(notification)


def pending_notifications(session: Session) -> list[Notification]:
    return list(session.info.get(_OUTBOX_KEY, []))


def deliver(notification: Notification) -> None:
    """Hand a notification to the delivery channel.

    Mail and push transports live outside this service; the built-in channel
    records the notification in the log.
    """
    logger.info(
        "Notification %s to %s: %s",
        notification.kind.value,
        notification.recipient,
        notification.title,
    )


def dispatch(notifications: list[Notification]) -> None:
    if not settings.notifications_enabled:
        return
    for notification in notifications:
        if not scheduler.submit(deliver, notification):
            try:
                deliver(notification)
            except Exception:
                logger.exception(
                    "Failed to deliver %s notification to %s",
                    notification.kind.value,
                    notification.recipient,
                )


@event.listens_for(Session, "after_commit")
def _flush_outbox(session: Session) -> None:
    outbox = session.info.pop(_OUTBOX_KEY, None)
    if outbox:
        dispatch(outbox)


@event.listens_for(Session, "after_rollback")
def _discard_outbox(session: Session) -> None:
    discarded = session.info.pop(_OUTBOX_KEY, None)
    if discarded:
        logger.debug("Discarded %d notifications after rollback", len(discarded))
