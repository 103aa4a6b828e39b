"""
auth/store.py -- SQLAlchemy Core persistence for permanent user accounts.

Pattern: Repository + Data Mapper. UserStore is the repository; row_to_user
is the mapper. Route and service code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Email lookups expect an already lower-cased key. Normalisation happens once,
  at the boundary (auth.models.parse_identifier, auth.registration). The
  repository compares exactly.

  update_permissions() refuses the root sentinel for every caller. Root is
  only ever written by create_user() from the out-of-band provisioning CLI.

Listing order:
  root first, then admin (MANAGE_USERS bit), then user; ties broken by id
  ascending. Stable across calls and cheap to index.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from sqlalchemy import case, delete, func, or_, select
from sqlalchemy.exc import IntegrityError

from auth.database import Clock, Database, from_db_time, guard_persistence, to_db_time, utc_now
from auth.errors import Conflict, Forbidden
from auth.models import EmailIdentifier, Identifier, User, UsernameIdentifier
from auth.permissions import ROOT, Perm

logger = logging.getLogger("seedgate.auth")


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore(db)
        uid = store.create_user(User(name="alice", email="a@x.com", password_salt=s, password_hash=h))
        user = store.get_by_name("alice")
    """

    def __init__(self, db: Database, clock: Clock = utc_now) -> None:
        self.db = db
        self.engine = db.engine
        self._users = db.schema.users
        self._sessions = db.schema.sessions
        self._clock = clock

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @guard_persistence("create user")
    def create_user(self, user: User) -> int:
        """Insert a user and return its assigned id.

        Raises Conflict if the name or email is already taken. The UNIQUE
        constraint is authoritative: a request that loses a signup race
        lands here rather than creating a duplicate.
        """
        created_at = user.created_at or self._clock()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    self._users.insert().values(
                        name=user.name,
                        email=user.email,
                        password_salt=user.password_salt,
                        password_hash=user.password_hash,
                        permissions=user.permissions,
                        created_at=to_db_time(created_at),
                    )
                )
        except IntegrityError as exc:
            logger.info("User insert rejected by uniqueness constraint (name=%s)", user.name)
            raise Conflict() from exc
        return result.inserted_primary_key[0]

    @guard_persistence("update permissions")
    def update_permissions(self, user_id: int, new_mask: int) -> bool:
        """Overwrite a user's permission mask.

        Returns True if a row changed, False if user_id does not exist.
        Raises Forbidden for the root sentinel regardless of who asks.
        """
        if new_mask == ROOT:
            raise Forbidden("Root permissions cannot be granted through this operation.")
        with self.engine.begin() as conn:
            result = conn.execute(
                self._users.update().where(self._users.c.id == user_id).values(permissions=int(new_mask))
            )
        return result.rowcount > 0

    @guard_persistence("delete user")
    def delete_user(self, user_id: int) -> bool:
        """Delete a user and every session that references it.

        Both deletes run in one transaction, so no request can resolve an
        orphaned session between them. Returns True if the user existed.
        """
        with self.engine.begin() as conn:
            conn.execute(delete(self._sessions).where(self._sessions.c.user_id == user_id))
            result = conn.execute(delete(self._users).where(self._users.c.id == user_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @guard_persistence("get user by id")
    def get_by_id(self, user_id: int) -> User | None:
        return self._fetch_one(self._users.c.id == user_id)

    @guard_persistence("get user by name")
    def get_by_name(self, name: str) -> User | None:
        """Exact, case-sensitive name match."""
        return self._fetch_one(self._users.c.name == name)

    @guard_persistence("get user by email")
    def get_by_email(self, email: str) -> User | None:
        """Exact email match. Callers pass the lower-cased address."""
        return self._fetch_one(self._users.c.email == email)

    def get_by_identifier(self, identifier: Identifier) -> User | None:
        if isinstance(identifier, EmailIdentifier):
            return self.get_by_email(identifier.value)
        if isinstance(identifier, UsernameIdentifier):
            return self.get_by_name(identifier.value)
        raise TypeError(f"Unsupported identifier: {identifier!r}")

    @guard_persistence("list users")
    def list_users(self, capability: int | None = None, include_root: bool = True) -> list[User]:
        """Return users ordered root, admin, user, then by id.

        capability: when given, only users holding every bit of it (root
            always qualifies).
        include_root: False hides root accounts, for callers that are not
            themselves root.
        """
        u = self._users
        rank = case(
            (u.c.permissions == ROOT, 0),
            (u.c.permissions.op("&")(int(Perm.MANAGE_USERS)) != 0, 1),
            else_=2,
        )
        query = select(u)
        if capability:
            required = int(capability)
            query = query.where(or_(u.c.permissions == ROOT, u.c.permissions.op("&")(required) == required))
        if not include_root:
            query = query.where(u.c.permissions != ROOT)
        query = query.order_by(rank, u.c.id)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [row_to_user(r) for r in rows]

    @guard_persistence("count users")
    def count_users(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(self._users)).scalar() or 0

    def has_users(self) -> bool:
        return self.count_users() > 0

    def _fetch_one(self, condition) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(self._users.select().where(condition)).fetchone()
        return row_to_user(row) if row is not None else None


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        password_salt=row.password_salt,
        password_hash=row.password_hash,
        permissions=row.permissions,
        created_at=from_db_time(row.created_at),
    )
