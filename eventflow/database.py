"""Database helpers for EventFlow."""

from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import scoped_session, sessionmaker

from .config import settings


def configure_sqlite_locking(target: Engine) -> Engine:
    """Make every transaction on ``target`` take SQLite's write lock up front.

    pysqlite defers BEGIN until the first write, which lets two transactions
    read the same counts before either writes. Emitting BEGIN IMMEDIATE
    serializes guarded read-then-write operations.
    """

    @event.listens_for(target, "connect")
    def _disable_pysqlite_begin(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(target, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return target


DATABASE_URL = settings.database_url
engine = configure_sqlite_locking(
    create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False, "timeout": 15},
        future=True,
    )
)
SessionLocal = scoped_session(
    sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        future=True,
        expire_on_commit=False,
    )
)


@contextmanager
def get_session():
    """Context manager returning a SQLAlchemy session.

    The block is one transaction: committed on success, rolled back on any
    exception.
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
