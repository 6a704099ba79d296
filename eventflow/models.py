"""SQLAlchemy models for EventFlow."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


class Role(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class Visibility(str, enum.Enum):
    PUBLIC = "PUBLIC"
    PRIVATE = "PRIVATE"


class Availability(str, enum.Enum):
    PUBLISHED = "PUBLISHED"
    CANCELLED = "CANCELLED"
    ARCHIVED = "ARCHIVED"
    COMPLETED = "COMPLETED"


class GuestStatus(str, enum.Enum):
    PENDING = "PENDING"
    YES = "YES"
    NO = "NO"
    MAYBE = "MAYBE"
    WAITLISTED = "WAITLISTED"


class ReportReason(str, enum.Enum):
    SPAM = "SPAM"
    INAPPROPRIATE = "INAPPROPRIATE"
    FRAUD = "FRAUD"
    SCAM = "SCAM"
    MISLEADING = "MISLEADING"
    HARASSMENT = "HARASSMENT"
    OTHER = "OTHER"


class ReportStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class PenaltyType(str, enum.Enum):
    WARNING = "WARNING"
    SUSPENSION = "SUSPENSION"
    BAN = "BAN"


class HiddenBy(str, enum.Enum):
    """Which moderation path hid an event."""

    AUTOMATIC = "AUTOMATIC"
    MANUAL = "MANUAL"
    BAN_CASCADE = "BAN_CASCADE"


def _enum(enum_cls: type[enum.Enum]) -> Enum:
    return Enum(enum_cls, native_enum=False, length=16, validate_strings=True)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(120), nullable=False)
    api_token = Column(String(128), nullable=False, unique=True)
    role = Column(_enum(Role), default=Role.USER, nullable=False)
    is_banned = Column(Boolean, default=False, nullable=False)
    banned_at = Column(DateTime, nullable=True)
    banned_until = Column(DateTime, nullable=True)
    ban_reason = Column(String(200), nullable=True)
    revision = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)

    events = relationship("Event", back_populates="owner", cascade="all, delete-orphan")
    penalties = relationship(
        "Penalty",
        back_populates="user",
        foreign_keys="Penalty.user_id",
        cascade="all, delete-orphan",
        order_by="desc(Penalty.created_at)",
    )

    __mapper_args__ = {"version_id_col": revision}

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=_uuid)
    owner_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String(255), nullable=True)
    date = Column(DateTime, nullable=False)
    visibility = Column(_enum(Visibility), default=Visibility.PUBLIC, nullable=False)
    availability = Column(
        _enum(Availability), default=Availability.PUBLISHED, nullable=False
    )
    capacity = Column(Integer, nullable=True)
    waitlist_enabled = Column(Boolean, default=False, nullable=False)
    cancelled_reason = Column(Text, nullable=True)
    report_count = Column(Integer, default=0, nullable=False)
    is_hidden = Column(Boolean, default=False, nullable=False)
    hidden_by = Column(_enum(HiddenBy), nullable=True)
    hidden_reason = Column(String(255), nullable=True)
    hidden_at = Column(DateTime, nullable=True)
    revision = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)
    last_modified = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    owner = relationship("User", back_populates="events")
    guests = relationship(
        "Guest",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="Guest.created_at",
    )
    reports = relationship(
        "Report", back_populates="event", cascade="all, delete-orphan"
    )

    __mapper_args__ = {"version_id_col": revision}

    @property
    def yes_count(self) -> int:
        return sum(1 for guest in self.guests if guest.status == GuestStatus.YES)


class Guest(Base):
    __tablename__ = "guests"
    __table_args__ = (UniqueConstraint("event_id", "email", name="uq_guest_email"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    email = Column(String(255), nullable=False)
    name = Column(String(120), nullable=True)
    status = Column(_enum(GuestStatus), default=GuestStatus.PENDING, nullable=False)
    responded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    event = relationship("Event", back_populates="guests")


class Report(Base):
    __tablename__ = "reports"
    __table_args__ = (
        UniqueConstraint("event_id", "reported_by", name="uq_report_reporter"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    reported_by = Column(String(36), ForeignKey("users.id"), nullable=False)
    reason = Column(_enum(ReportReason), nullable=False)
    details = Column(String(500), nullable=True)
    status = Column(_enum(ReportStatus), default=ReportStatus.PENDING, nullable=False)
    reviewed_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    review_notes = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    event = relationship("Event", back_populates="reports")


class Penalty(Base):
    __tablename__ = "penalties"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    type = Column(_enum(PenaltyType), nullable=False)
    reason = Column(String(200), nullable=False)
    details = Column(String(500), nullable=True)
    duration = Column(Integer, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_by = Column(String(36), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)

    user = relationship("User", back_populates="penalties", foreign_keys=[user_id])
