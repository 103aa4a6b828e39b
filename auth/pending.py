"""
auth/pending.py -- Staging table for signups awaiting email verification.

Lifecycle of a row (one per verification token):

  pending    inserted by create(); live while expires_at > now
  verified   promote() deleted it and inserted the user, in one transaction
  expired    expires_at passed; invisible to every read, removed by
             cleanup_expired() or by the next create() for the same identity
  conflicted promote() hit a users uniqueness violation; the caller deletes
             the row and no user is created

No state leads back to pending. Rows are never updated in place.

Races:
  The UNIQUE constraints on name, email and token are the real guard. The
  existence check (exists_pending) only avoids hashing a
  password for a signup that is bound to fail.

  promote() deletes the pending row (by token, never by id) first and only
  inserts the user if that delete removed exactly one live row. Two
  concurrent verifications of the same token therefore produce at most one
  user; the loser sees None, which callers report exactly like an expired
  token. A verification that read its record just before a sweep cannot
  consume a newer row that happens to reuse the id.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from sqlalchemy import and_, delete, exists, or_, select
from sqlalchemy.exc import IntegrityError

from auth.database import Clock, Database, from_db_time, guard_persistence, to_db_time, utc_now
from auth.errors import Conflict
from auth.models import PendingRegistration

logger = logging.getLogger("seedgate.auth")


class PendingStore:
    """Repository for PendingRegistration rows."""

    def __init__(self, db: Database, clock: Clock = utc_now) -> None:
        self.engine = db.engine
        self._pending = db.schema.pending
        self._users = db.schema.users
        self._clock = clock

    def _now(self) -> str:
        return to_db_time(self._clock())

    @guard_persistence("create pending registration")
    def create(self, record: PendingRegistration) -> int:
        """Insert a pending registration and return its id.

        Expired rows holding the same name or email are cleared in the same
        transaction, so a stale signup never blocks a fresh one. Raises
        Conflict if a live row (or a concurrent insert) already holds the
        name, email or token.
        """
        p = self._pending
        now = self._now()
        created_at = record.created_at or self._clock()
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    delete(p).where(
                        and_(or_(p.c.name == record.name, p.c.email == record.email), p.c.expires_at <= now)
                    )
                )
                result = conn.execute(
                    p.insert().values(
                        name=record.name,
                        email=record.email,
                        password_salt=record.password_salt,
                        password_hash=record.password_hash,
                        token=record.token,
                        created_at=to_db_time(created_at),
                        expires_at=to_db_time(record.expires_at),
                    )
                )
        except IntegrityError as exc:
            logger.info("Pending insert rejected by uniqueness constraint (name=%s)", record.name)
            raise Conflict() from exc
        return result.inserted_primary_key[0]

    @guard_persistence("find pending registration")
    def find_by_token(self, token: str) -> PendingRegistration | None:
        """Return the live record for token, or None if unknown or expired."""
        if not token:
            return None
        p = self._pending
        with self.engine.connect() as conn:
            row = conn.execute(select(p).where(and_(p.c.token == token, p.c.expires_at > self._now()))).fetchone()
        return _row_to_pending(row) if row is not None else None

    @guard_persistence("check pending registration")
    def exists_pending(self, email: str, username: str) -> bool:
        """True if a live pending row holds either the email or the username."""
        p = self._pending
        query = select(
            exists().where(and_(or_(p.c.email == email, p.c.name == username), p.c.expires_at > self._now()))
        )
        with self.engine.connect() as conn:
            return bool(conn.execute(query).scalar())

    @guard_persistence("delete pending registration")
    def delete(self, pending_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(delete(self._pending).where(self._pending.c.id == pending_id))
        return result.rowcount > 0

    @guard_persistence("delete pending registration by token")
    def delete_by_token(self, token: str) -> bool:
        """Delete the row holding token. Tokens are unique and never reused, unlike ids."""
        with self.engine.begin() as conn:
            result = conn.execute(delete(self._pending).where(self._pending.c.token == token))
        return result.rowcount > 0

    @guard_persistence("clean up pending registrations")
    def cleanup_expired(self) -> int:
        """Delete every row at or past its expiry. Returns rows removed. Idempotent."""
        with self.engine.begin() as conn:
            result = conn.execute(delete(self._pending).where(self._pending.c.expires_at <= self._now()))
        if result.rowcount:
            logger.info("Removed %d expired pending registrations", result.rowcount)
        return result.rowcount

    @guard_persistence("promote pending registration")
    def promote(self, record: PendingRegistration, permissions: int) -> int | None:
        """Consume record and create the permanent user in one transaction.

        Returns the new user id, or None if the row was already consumed or
        expired by the time the transaction ran. Raises Conflict if the users
        table rejects the name or email; the transaction is rolled back, so
        the pending row survives and the caller decides what to do with it.
        Any other datastore failure surfaces as PersistenceError, also with
        the pending row intact.
        """
        p, u = self._pending, self._users
        now = self._now()
        try:
            with self.engine.begin() as conn:
                consumed = conn.execute(delete(p).where(and_(p.c.token == record.token, p.c.expires_at > now)))
                if consumed.rowcount != 1:
                    return None
                result = conn.execute(
                    u.insert().values(
                        name=record.name,
                        email=record.email,
                        password_salt=record.password_salt,
                        password_hash=record.password_hash,
                        permissions=permissions,
                        created_at=now,
                    )
                )
        except IntegrityError as exc:
            logger.info("Promotion of pending %s rejected by users uniqueness constraint", record.id)
            raise Conflict() from exc
        return result.inserted_primary_key[0]


def _row_to_pending(row) -> PendingRegistration:
    return PendingRegistration(
        id=row.id,
        name=row.name,
        email=row.email,
        password_salt=row.password_salt,
        password_hash=row.password_hash,
        token=row.token,
        created_at=from_db_time(row.created_at),
        expires_at=from_db_time(row.expires_at),
    )
