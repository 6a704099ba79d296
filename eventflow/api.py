"""FastAPI application for EventFlow."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version as pkg_version

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import crud, operations
from .config import settings
from .database import SessionLocal
from .errors import ForbiddenError, ServiceError
from .models import (
    Availability,
    Event,
    Guest,
    GuestStatus,
    Penalty,
    PenaltyType,
    Report,
    ReportReason,
    ReportStatus,
    User,
    Visibility,
)
from .scheduler import start_scheduler, stop_scheduler
from .storage import init_db
from .utils import isoformat_or_none

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")


def _load_app_version() -> str:
    try:
        return pkg_version("eventflow")
    except PackageNotFoundError:
        return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    if settings.enable_scheduler:
        start_scheduler()
    try:
        yield
    finally:
        stop_scheduler()


app = FastAPI(title="EventFlow", version=APP_VERSION, lifespan=lifespan)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# -------- error handling --------


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    logger.debug(
        "%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message
    )
    return JSONResponse(exc.as_dict(), status_code=exc.status_code)


@app.exception_handler(StaleDataError)
async def stale_data_handler(request: Request, exc: StaleDataError):
    logger.info("Concurrent update rejected on %s %s", request.method, request.url.path)
    return JSONResponse(
        {
            "error": "CONCURRENT_UPDATE",
            "message": "The record was changed by another request. Reload and retry.",
        },
        status_code=409,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        {"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers
    )


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    if "database is locked" in raw.lower():
        logger.error(
            "SQLite database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        return JSONResponse(
            {"detail": "The database is busy. Please retry shortly."}, status_code=503
        )
    logger.error(
        "Operational database error on %s %s: %s",
        request.method,
        request.url.path,
        raw,
    )
    return JSONResponse({"detail": "Database error"}, status_code=500)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"detail": exc.errors()}, status_code=422)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return JSONResponse({"detail": "Internal server error"}, status_code=500)


# -------- authentication --------


def _get_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("authorization") or ""
    if not auth_header.lower().startswith("bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def optional_user(request: Request, db: Session = Depends(get_db)) -> User | None:
    return crud.get_user_by_token(db, _get_bearer_token(request))


def current_user(user: User | None = Depends(optional_user)) -> User:
    if not user:
        raise HTTPException(
            status_code=401,
            detail="Missing or invalid API token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def active_user(
    user: User = Depends(current_user), db: Session = Depends(get_db)
) -> User:
    """Run the ban check in its own transaction before the request proceeds.

    An expired suspension lifted here stays lifted even if the operation
    itself fails afterwards.
    """
    operations.check_access(db, user.id)
    db.commit()
    return user


def admin_user(user: User = Depends(current_user), db: Session = Depends(get_db)) -> User:
    return operations.require_admin(db, user.id)


# -------- payloads --------


class EventCreatePayload(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    location: str | None = Field(None, max_length=255)
    date: datetime
    visibility: Visibility = Visibility.PUBLIC
    availability: Availability | None = None
    capacity: int | None = Field(
        None, description="Maximum number of YES guests; null means unlimited"
    )
    waitlist_enabled: bool = False


class EventUpdatePayload(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    location: str | None = Field(None, max_length=255)
    date: datetime | None = None
    visibility: Visibility | None = None
    availability: Availability | None = None
    capacity: int | None = None
    waitlist_enabled: bool | None = None
    cancelled_reason: str | None = None
    notify_guests: bool = False
    revision: int | None = Field(
        None,
        description=(
            "Reject the update unless the event is at this revision. Edits and "
            "moderation hiding advance it; filing reports does not."
        ),
    )


class InvitePayload(BaseModel):
    emails: list[str] = Field(..., min_length=1)


class GuestUpdatePayload(BaseModel):
    status: GuestStatus | None = None
    name: str | None = Field(None, max_length=120)


class ReportCreatePayload(BaseModel):
    event_id: str
    reason: ReportReason
    details: str | None = Field(None, max_length=500)


class ReportReviewPayload(BaseModel):
    status: ReportStatus
    review_notes: str | None = Field(None, max_length=500)


class PenaltyCreatePayload(BaseModel):
    user_id: str
    type: PenaltyType
    reason: str = Field(..., min_length=1, max_length=200)
    details: str | None = Field(None, max_length=500)
    duration: int | None = Field(None, ge=1, le=365, description="Days; SUSPENSION only")


class HidePayload(BaseModel):
    reason: str | None = Field(None, max_length=255)


# -------- serialization --------


def _serialize_user(user: User, *, include_ban: bool = True) -> dict:
    payload = {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role.value,
    }
    if include_ban:
        payload.update(
            {
                "is_banned": user.is_banned,
                "banned_at": isoformat_or_none(user.banned_at),
                "banned_until": isoformat_or_none(user.banned_until),
                "ban_reason": user.ban_reason,
            }
        )
    return payload


def _serialize_guest(guest: Guest) -> dict:
    return {
        "id": guest.id,
        "event_id": guest.event_id,
        "email": guest.email,
        "name": guest.name,
        "status": guest.status.value,
        "responded_at": isoformat_or_none(guest.responded_at),
    }


def _serialize_event(event: Event, *, include_guests: bool = False) -> dict:
    payload = {
        "id": event.id,
        "owner_id": event.owner_id,
        "title": event.title,
        "description": event.description,
        "location": event.location,
        "date": event.date.isoformat(),
        "visibility": event.visibility.value,
        "availability": event.availability.value,
        "capacity": event.capacity,
        "waitlist_enabled": event.waitlist_enabled,
        "yes_count": event.yes_count,
        "cancelled_reason": event.cancelled_reason,
        "report_count": event.report_count,
        "is_hidden": event.is_hidden,
        "hidden_by": event.hidden_by.value if event.hidden_by else None,
        "hidden_reason": event.hidden_reason,
        "hidden_at": isoformat_or_none(event.hidden_at),
        "revision": event.revision,
        "created_at": isoformat_or_none(event.created_at),
        "last_modified": isoformat_or_none(event.last_modified),
    }
    if include_guests:
        payload["guests"] = [_serialize_guest(guest) for guest in event.guests]
    return payload


def _serialize_report(report: Report) -> dict:
    return {
        "id": report.id,
        "event_id": report.event_id,
        "reported_by": report.reported_by,
        "reason": report.reason.value,
        "details": report.details,
        "status": report.status.value,
        "reviewed_by": report.reviewed_by,
        "reviewed_at": isoformat_or_none(report.reviewed_at),
        "review_notes": report.review_notes,
        "created_at": isoformat_or_none(report.created_at),
    }


def _serialize_penalty(penalty: Penalty) -> dict:
    return {
        "id": penalty.id,
        "user_id": penalty.user_id,
        "type": penalty.type.value,
        "reason": penalty.reason,
        "details": penalty.details,
        "duration": penalty.duration,
        "expires_at": isoformat_or_none(penalty.expires_at),
        "is_active": penalty.is_active,
        "created_by": penalty.created_by,
        "created_at": isoformat_or_none(penalty.created_at),
    }


def _can_manage(event: Event, user: User | None) -> bool:
    return bool(user and (user.is_admin or user.id == event.owner_id))


# -------- JSON API (v1) --------


@app.get("/health")
def health():
    return {"status": "ok", "version": APP_VERSION}


@app.get("/api/v1/me")
def api_me(user: User = Depends(active_user)):
    return {"user": _serialize_user(user)}


@app.get("/api/v1/events")
def api_list_public_events(
    page: int = Query(1, ge=1),
    per_page: int = Query(settings.events_per_page, ge=1, le=100),
    db: Session = Depends(get_db),
):
    events, pagination = crud.list_public_events(db, page=page, per_page=per_page)
    return {
        "events": [_serialize_event(event) for event in events],
        "pagination": pagination,
    }


@app.post("/api/v1/events", status_code=201)
def api_create_event(
    payload: EventCreatePayload,
    user: User = Depends(active_user),
    db: Session = Depends(get_db),
):
    event = operations.create_event(
        db,
        caller_id=user.id,
        title=payload.title,
        date=payload.date,
        description=payload.description,
        location=payload.location,
        visibility=payload.visibility,
        capacity=payload.capacity,
        waitlist_enabled=payload.waitlist_enabled,
        availability=payload.availability,
    )
    return {"event": _serialize_event(event, include_guests=True)}


@app.get("/api/v1/events/mine")
def api_my_events(user: User = Depends(current_user), db: Session = Depends(get_db)):
    events = crud.list_owned_events(db, user.id)
    return {"events": [_serialize_event(event) for event in events]}


@app.get("/api/v1/events/invites")
def api_my_invites(user: User = Depends(current_user), db: Session = Depends(get_db)):
    events = crud.list_invited_events(db, user.email)
    return {"events": [_serialize_event(event) for event in events]}


@app.get("/api/v1/events/{event_id}")
def api_get_event(
    event_id: str,
    user: User | None = Depends(optional_user),
    db: Session = Depends(get_db),
):
    event = operations.get_visible_event(db, event_id=event_id, viewer=user)
    return {"event": _serialize_event(event, include_guests=_can_manage(event, user))}


@app.patch("/api/v1/events/{event_id}")
def api_update_event(
    event_id: str,
    payload: EventUpdatePayload,
    user: User = Depends(active_user),
    db: Session = Depends(get_db),
):
    data = payload.model_dump(exclude_unset=True)
    notify_guests = data.pop("notify_guests", False)
    revision = data.pop("revision", None)
    event = operations.update_event(
        db,
        event_id=event_id,
        caller_id=user.id,
        changes=data,
        revision=revision,
        notify_guests=notify_guests,
    )
    return {"event": _serialize_event(event, include_guests=True)}


@app.delete("/api/v1/events/{event_id}", status_code=204)
def api_delete_event(
    event_id: str, user: User = Depends(active_user), db: Session = Depends(get_db)
):
    operations.delete_event(db, event_id=event_id, caller_id=user.id)
    return Response(status_code=204)


@app.get("/api/v1/events/{event_id}/guests")
def api_list_guests(
    event_id: str, user: User = Depends(current_user), db: Session = Depends(get_db)
):
    event = operations.get_visible_event(db, event_id=event_id, viewer=user)
    if not _can_manage(event, user):
        raise ForbiddenError("NOT_OWNER", "Only the event owner can list guests")
    return {"guests": [_serialize_guest(guest) for guest in event.guests]}


@app.post("/api/v1/events/{event_id}/guests", status_code=201)
def api_invite_guests(
    event_id: str,
    payload: InvitePayload,
    user: User = Depends(active_user),
    db: Session = Depends(get_db),
):
    guests = operations.invite_guests(
        db, event_id=event_id, caller_id=user.id, emails=payload.emails
    )
    return {"guests": [_serialize_guest(guest) for guest in guests]}


@app.patch("/api/v1/events/{event_id}/guests/{guest_id}")
def api_update_guest(
    event_id: str,
    guest_id: str,
    payload: GuestUpdatePayload,
    user: User = Depends(active_user),
    db: Session = Depends(get_db),
):
    guest = operations.respond_to_invitation(
        db,
        event_id=event_id,
        guest_id=guest_id,
        caller_id=user.id,
        status=payload.status,
        name=payload.name,
    )
    return {"guest": _serialize_guest(guest)}


# -------- moderation --------


@app.post("/api/v1/moderation/reports", status_code=201)
def api_file_report(
    payload: ReportCreatePayload,
    user: User = Depends(active_user),
    db: Session = Depends(get_db),
):
    report, auto_hidden = operations.file_report(
        db,
        event_id=payload.event_id,
        reporter_id=user.id,
        reason=payload.reason,
        details=payload.details,
    )
    return {"report": _serialize_report(report), "auto_hidden": auto_hidden}


@app.get("/api/v1/moderation/reports/my")
def api_my_reports(user: User = Depends(current_user), db: Session = Depends(get_db)):
    reports = crud.list_reports(db, reporter_id=user.id)
    return {"reports": [_serialize_report(report) for report in reports]}


@app.get("/api/v1/moderation/reports/pending")
def api_pending_reports(
    _: User = Depends(admin_user), db: Session = Depends(get_db)
):
    reports = crud.list_reports(
        db, status=ReportStatus.PENDING, limit=settings.admin_list_limit
    )
    return {"reports": [_serialize_report(report) for report in reports]}


@app.get("/api/v1/moderation/reports")
def api_all_reports(
    status: ReportStatus | None = Query(None),
    _: User = Depends(admin_user),
    db: Session = Depends(get_db),
):
    reports = crud.list_reports(db, status=status, limit=settings.admin_list_limit)
    return {"reports": [_serialize_report(report) for report in reports]}


@app.patch("/api/v1/moderation/reports/{report_id}/review")
def api_review_report(
    report_id: str,
    payload: ReportReviewPayload,
    event_id: str | None = Query(None),
    admin: User = Depends(admin_user),
    db: Session = Depends(get_db),
):
    report = operations.review_report(
        db,
        report_id=report_id,
        reviewer_id=admin.id,
        decision=payload.status,
        notes=payload.review_notes,
        event_id=event_id,
    )
    return {"report": _serialize_report(report)}


@app.post("/api/v1/moderation/penalties", status_code=201)
def api_issue_penalty(
    payload: PenaltyCreatePayload,
    admin: User = Depends(admin_user),
    db: Session = Depends(get_db),
):
    penalty = operations.issue_penalty(
        db,
        target_user_id=payload.user_id,
        penalty_type=payload.type,
        reason=payload.reason,
        details=payload.details,
        duration=payload.duration,
        admin_id=admin.id,
    )
    return {"penalty": _serialize_penalty(penalty)}


@app.get("/api/v1/moderation/penalties/user/{user_id}")
def api_user_penalties(
    user_id: str, _: User = Depends(admin_user), db: Session = Depends(get_db)
):
    penalties = crud.list_user_penalties(db, user_id)
    return {"penalties": [_serialize_penalty(penalty) for penalty in penalties]}


@app.get("/api/v1/moderation/banned-users")
def api_banned_users(_: User = Depends(admin_user), db: Session = Depends(get_db)):
    users = crud.list_banned_users(db, limit=settings.admin_list_limit)
    return {"users": [_serialize_user(user) for user in users]}


@app.post("/api/v1/moderation/unban/{user_id}")
def api_unban_user(
    user_id: str, admin: User = Depends(admin_user), db: Session = Depends(get_db)
):
    user = operations.unban_user(db, target_user_id=user_id, admin_id=admin.id)
    return {"user": _serialize_user(user), "message": "User unbanned"}


@app.post("/api/v1/moderation/events/{event_id}/hide")
def api_hide_event(
    event_id: str,
    payload: HidePayload | None = None,
    admin: User = Depends(admin_user),
    db: Session = Depends(get_db),
):
    event = operations.hide_event(
        db,
        event_id=event_id,
        admin_id=admin.id,
        reason=payload.reason if payload else None,
    )
    return {"event": _serialize_event(event)}


@app.post("/api/v1/moderation/events/{event_id}/unhide")
def api_unhide_event(
    event_id: str, admin: User = Depends(admin_user), db: Session = Depends(get_db)
):
    event = operations.unhide_event(db, event_id=event_id, admin_id=admin.id)
    return {"event": _serialize_event(event)}


@app.get("/api/v1/moderation/stats")
def api_moderation_stats(admin: User = Depends(admin_user), db: Session = Depends(get_db)):
    return {"stats": operations.moderation_stats(db, admin_id=admin.id)}
