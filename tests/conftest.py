"""Shared pytest fixtures for EventFlow."""

from __future__ import annotations

import sys
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from eventflow import api, crud, database, notifications, storage
from eventflow.models import Base, Role
from eventflow.utils import utcnow


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    session_factory = scoped_session(
        sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )
    database.engine = engine
    database.SessionLocal = session_factory
    storage.engine = engine
    api.SessionLocal = session_factory
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    database.SessionLocal.remove()
    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield
    database.SessionLocal.remove()


@pytest.fixture(autouse=True)
def delivered(monkeypatch):
    """Capture notifications instead of logging them."""

    sent: list[notifications.Notification] = []
    monkeypatch.setattr(notifications, "deliver", sent.append)
    return sent


@pytest.fixture()
def session():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        db.close()


@pytest.fixture()
def now():
    return utcnow().replace(microsecond=0)


@pytest.fixture()
def make_user(session):
    counter = {"value": 0}

    def _make(*, name: str | None = None, role: Role = Role.USER):
        counter["value"] += 1
        label = name or f"user{counter['value']}"
        user = crud.create_user(
            session, email=f"{label}@example.com", name=label.title(), role=role
        )
        session.commit()
        return user

    return _make


@pytest.fixture()
def admin(make_user):
    return make_user(name="admin", role=Role.ADMIN)


@pytest.fixture()
def tomorrow(now):
    return now + timedelta(days=1)


@pytest.fixture()
def yesterday(now):
    return now - timedelta(days=1)
