"""
auth/database.py -- Schema, engine and shared helpers for the auth stores.

Pattern: one Database object owns the SQLAlchemy engine and the three Table
objects. UserStore, SessionStore and PendingStore each receive the same
Database, so operations that must touch two tables (user delete + session
cleanup, pending promotion) can run inside one engine.begin() transaction.

Table names come from a TableConfig injected at construction. Nothing here
reads settings directly.

Timestamps:
  Stored as fixed-width UTC ISO 8601 strings (microseconds always present,
  offset always +00:00). Fixed width means SQL string comparison orders the
  same way as the instants do, on every backend, so expiry checks can run in
  the WHERE clause.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import wraps
from typing import Callable

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.errors import PersistenceError
from core.config import TableConfig

logger = logging.getLogger("seedgate.db")

Clock = Callable[[], datetime]

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


# ---------------------------------------------------------------------------
# Clock / timestamp helpers
# ---------------------------------------------------------------------------


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: datetime) -> str:
    """Render an aware datetime as a fixed-width UTC string.

    Naive datetimes are rejected: guessing their offset is exactly the
    local-time/UTC mix-up this format exists to prevent.
    """
    if value.tzinfo is None:
        raise ValueError("Timestamps must be timezone-aware.")
    return value.astimezone(timezone.utc).strftime(_TS_FORMAT)


def from_db_time(value: str) -> datetime:
    return datetime.fromisoformat(value)


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


@dataclass
class AuthSchema:
    metadata: MetaData
    users: Table
    pending: Table
    sessions: Table


def build_schema(tables: TableConfig) -> AuthSchema:
    """Build the auth tables under the configured names.

    UNIQUE constraints on name and email in both users and pending are the
    authoritative guard against concurrent duplicate signups. The
    application-level existence checks only save work.
    """
    metadata = MetaData()

    users = Table(
        tables.users,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("name", String(64), nullable=False, unique=True),
        Column("email", String(320), nullable=False, unique=True),
        Column("password_salt", String(64), nullable=False),
        Column("password_hash", String(64), nullable=False),
        Column("permissions", Integer, nullable=False, server_default="1"),
        Column("created_at", String(32), nullable=False),
        sqlite_autoincrement=True,
    )

    pending = Table(
        tables.pending,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("name", String(64), nullable=False, unique=True),
        Column("email", String(320), nullable=False, unique=True),
        Column("password_salt", String(64), nullable=False),
        Column("password_hash", String(64), nullable=False),
        Column("token", String(128), nullable=False, unique=True),
        Column("created_at", String(32), nullable=False),
        Column("expires_at", String(32), nullable=False),
        Index(f"ix_{tables.pending}_expires_at", "expires_at"),
        sqlite_autoincrement=True,
    )

    sessions = Table(
        tables.sessions,
        metadata,
        Column("session_id", String(128), primary_key=True),
        Column("user_id", Integer, nullable=False),
        Column("expires_at", String(32), nullable=False),
        Index(f"ix_{tables.sessions}_user_id", "user_id"),
    )

    return AuthSchema(metadata=metadata, users=users, pending=pending, sessions=sessions)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind a writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


class Database:
    """Engine plus schema shared by every auth store.

    Usage:
        db = Database("sqlite:///auth.db", TableConfig())
        users = UserStore(db)
        ...
        db.close()
    """

    def __init__(self, db_url: str, tables: TableConfig | None = None) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        self.tables = tables or TableConfig()
        self.schema = build_schema(self.tables)
        self.schema.metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if a trivial query succeeds. Used by the health endpoint."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            logger.exception("Database health check failed")
            return False

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


def guard_persistence(operation: str) -> Callable:
    """Decorator: log SQLAlchemy failures with context, re-raise as PersistenceError.

    Domain errors raised inside the wrapped method (Conflict, Forbidden, ...)
    pass through untouched. Only driver-level failures are translated, so the
    caller sees one error type for "the datastore let us down".
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except SQLAlchemyError as exc:
                logger.exception("Database error during %s", operation)
                raise PersistenceError() from exc

        return wrapper

    return decorator
