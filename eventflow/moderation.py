"""Report threshold rules and hidden-state bookkeeping."""

from __future__ import annotations

from datetime import datetime

from .errors import ConflictError
from .models import Event, HiddenBy, Report, ReportStatus

REPORT_HIDE_THRESHOLD = 3
AUTO_HIDE_REASON = "Multiple reports (automatically hidden)"
BAN_HIDE_REASON = "Organizer banned"
MANUAL_HIDE_REASON = "Hidden by moderator"


def should_auto_hide(pending_count: int) -> bool:
    return pending_count >= REPORT_HIDE_THRESHOLD


def can_auto_hide(event: Event) -> bool:
    """Automatic hiding leaves an already hidden event, and its origin, alone.

    Reaching the threshold again does not rewrite ``hidden_by``,
    ``hidden_reason`` or ``hidden_at``; a MANUAL or BAN_CASCADE hide stays
    one and is never auto-restored.
    """
    return not event.is_hidden


def should_auto_restore(event: Event, decision: ReportStatus, pending_count: int) -> bool:
    """Whether rejecting a report should unhide its event.

    Restoration happens when the event was hidden by the report threshold
    and fewer than the threshold of pending reports remain.
    """
    return (
        decision == ReportStatus.REJECTED
        and event.is_hidden
        and event.hidden_by == HiddenBy.AUTOMATIC
        and pending_count < REPORT_HIDE_THRESHOLD
    )


def hide_event(
    event: Event, *, hidden_by: HiddenBy, reason: str, now: datetime
) -> None:
    event.is_hidden = True
    event.hidden_by = hidden_by
    event.hidden_reason = reason
    event.hidden_at = now


def restore_event(event: Event) -> None:
    event.is_hidden = False
    event.hidden_by = None
    event.hidden_reason = None
    event.hidden_at = None


def ensure_reviewable(report: Report) -> None:
    if report.status != ReportStatus.PENDING:
        raise ConflictError(
            "ALREADY_REVIEWED",
            f"Report has already been reviewed ({report.status.value})",
        )
