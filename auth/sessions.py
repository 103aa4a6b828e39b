"""
auth/sessions.py -- Opaque bearer sessions backed by the sessions table.

The session id is the credential: 256 bits from secrets.token_urlsafe, so
collisions and guessing are both out of reach. A session is valid while
expires_at > now (strictly). Expired rows are removed lazily when someone
presents them, and in bulk by cleanup_expired() from the background sweep.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta

from sqlalchemy import delete, select

from auth.database import Clock, Database, from_db_time, guard_persistence, to_db_time, utc_now
from auth.errors import PersistenceError
from auth.models import Session, User
from auth.store import row_to_user

logger = logging.getLogger("seedgate.auth")

SESSION_TTL = timedelta(days=7)
_SESSION_ID_BYTES = 32


class SessionStore:
    def __init__(self, db: Database, ttl: timedelta = SESSION_TTL, clock: Clock = utc_now) -> None:
        self.engine = db.engine
        self._sessions = db.schema.sessions
        self._users = db.schema.users
        self.ttl = ttl
        self._clock = clock

    @guard_persistence("create session")
    def create_session(self, user_id: int) -> str:
        """Persist a new session for user_id and return its id.

        Raises PersistenceError if the row was not written.
        """
        session_id = secrets.token_urlsafe(_SESSION_ID_BYTES)
        expires_at = self._clock() + self.ttl
        with self.engine.begin() as conn:
            result = conn.execute(
                self._sessions.insert().values(
                    session_id=session_id,
                    user_id=user_id,
                    expires_at=to_db_time(expires_at),
                )
            )
        if result.rowcount != 1:
            logger.error("Session insert for user %s affected %s rows", user_id, result.rowcount)
            raise PersistenceError()
        return session_id

    @guard_persistence("resolve session")
    def resolve_session(self, session_id: str) -> User | None:
        """Return the user bound to session_id, or None.

        None covers unknown ids, expired sessions and sessions whose user no
        longer exists. An expired row is deleted before returning.
        """
        if not session_id:
            return None
        s, u = self._sessions, self._users
        with self.engine.connect() as conn:
            row = conn.execute(
                select(s.c.expires_at, u)
                .select_from(s)
                .join(u, u.c.id == s.c.user_id)
                .where(s.c.session_id == session_id)
            ).fetchone()
        if row is None:
            return None
        if not row.expires_at > to_db_time(self._clock()):
            self.delete_session(session_id)
            logger.info("Expired session removed on use")
            return None
        return row_to_user(row)

    @guard_persistence("delete session")
    def delete_session(self, session_id: str) -> None:
        """Delete a session. Deleting an absent session is not an error."""
        with self.engine.begin() as conn:
            conn.execute(delete(self._sessions).where(self._sessions.c.session_id == session_id))

    @guard_persistence("list user sessions")
    def list_for_user(self, user_id: int) -> list[Session]:
        """Return the user's live sessions, soonest to expire first."""
        s = self._sessions
        now = to_db_time(self._clock())
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(s).where(s.c.user_id == user_id, s.c.expires_at > now).order_by(s.c.expires_at)
            ).fetchall()
        return [
            Session(session_id=r.session_id, user_id=r.user_id, expires_at=from_db_time(r.expires_at)) for r in rows
        ]

    @guard_persistence("delete user sessions")
    def delete_for_user(self, user_id: int) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(delete(self._sessions).where(self._sessions.c.user_id == user_id))
        return result.rowcount

    @guard_persistence("clean up sessions")
    def cleanup_expired(self) -> int:
        """Delete every session at or past its expiry. Returns rows removed."""
        now = to_db_time(self._clock())
        with self.engine.begin() as conn:
            result = conn.execute(delete(self._sessions).where(self._sessions.c.expires_at <= now))
        return result.rowcount
