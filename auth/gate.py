"""
auth/gate.py -- Authentication and authorization entry point.

Every privileged operation goes through AuthGate:

  login()               identifier + password -> (User, session id)
  authenticate()        session id -> Identity, or Unauthenticated
  require_capability()  Identity -> Identity, or Forbidden
  require_root()        Identity -> Identity, or Forbidden

Unauthenticated is raised with one message whether the token was missing,
unknown or expired. Forbidden (403) is only raised once the caller is known.

Escalation guards for the admin endpoints live here too, on top of the
permission math:
  - nobody changes their own mask through set_admin()
  - a root account is never modified or deleted through the API
  - grant/revoke only ever writes ADMIN_PRESET or USER_PRESET

Security:
  login() runs the KDF against a dummy credential when the identifier is
  unknown, so response time does not reveal whether an account exists. Both
  failure paths raise the same BadCredentials.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from auth.errors import BadCredentials, Forbidden, NotFound, Unauthenticated
from auth.models import Identifier, User, parse_identifier
from auth.passwords import PBKDF2_ITERATIONS, derive_hash, generate_salt, verify_password, verify_stored_password
from auth.permissions import ADMIN_PRESET, USER_PRESET, Perm, has_permission, is_root
from auth.sessions import SessionStore
from auth.store import UserStore

logger = logging.getLogger("seedgate.auth")


@dataclass(frozen=True)
class Identity:
    """An authenticated caller: the user plus the session that proved it."""

    user: User
    session_id: str

    @property
    def user_id(self) -> int:
        return self.user.id

    @property
    def permissions(self) -> int:
        return self.user.permissions


class AuthGate:
    def __init__(self, users: UserStore, sessions: SessionStore, iterations: int = PBKDF2_ITERATIONS) -> None:
        self.users = users
        self.sessions = sessions
        self.iterations = iterations
        # Derived once so the first failed login is not measurably faster.
        self._dummy_salt = generate_salt()
        self._dummy_hash = derive_hash("seedgate_timing_dummy", self._dummy_salt, iterations)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, identifier: str | Identifier, password: str) -> tuple[User, str]:
        """Check credentials and open a session.

        Raises BadCredentials for an unknown identifier and for a wrong
        password alike.
        """
        ident = parse_identifier(identifier) if isinstance(identifier, str) else identifier
        user = self.users.get_by_identifier(ident)
        if user is None:
            verify_password(password, self._dummy_salt, self._dummy_hash, self.iterations)
            raise BadCredentials()
        if not verify_stored_password(password, user.password_salt, user.password_hash, self.iterations):
            raise BadCredentials()
        session_id = self.sessions.create_session(user.id)
        logger.info("User %s logged in", user.id)
        return user, session_id

    def logout(self, session_id: str | None) -> None:
        if session_id:
            self.sessions.delete_session(session_id)

    def authenticate(self, session_id: str | None) -> Identity:
        """Resolve a bearer session to an Identity or raise Unauthenticated."""
        if not session_id:
            raise Unauthenticated()
        user = self.sessions.resolve_session(session_id)
        if user is None:
            raise Unauthenticated()
        return Identity(user=user, session_id=session_id)

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def require_capability(self, identity: Identity, required: int) -> Identity:
        if not has_permission(identity.permissions, required):
            raise Forbidden()
        return identity

    def require_root(self, identity: Identity) -> Identity:
        if not is_root(identity.permissions):
            raise Forbidden("Root access required.")
        return identity

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    def list_users(self, actor: Identity, capability: int | None = None) -> list[User]:
        """List accounts for a MANAGE_USERS caller. Only root callers see root rows."""
        self.require_capability(actor, Perm.MANAGE_USERS)
        return self.users.list_users(capability=capability, include_root=is_root(actor.permissions))

    def set_admin(self, actor: Identity, target: User, grant: bool) -> int:
        """Grant (ADMIN_PRESET) or revoke (USER_PRESET) admin rights on target.

        Returns the mask written.
        """
        self.require_root(actor)
        if target.id == actor.user_id:
            raise Forbidden("You cannot change your own permissions.")
        if is_root(target.permissions):
            raise Forbidden("Root accounts cannot be modified.")
        new_mask = ADMIN_PRESET if grant else USER_PRESET
        if not self.users.update_permissions(target.id, new_mask):
            raise NotFound("User not found.")
        logger.info("User %s %s admin rights on user %s", actor.user_id, "granted" if grant else "revoked", target.id)
        return new_mask

    def delete_user(self, actor: Identity, target: User) -> None:
        """Delete target and its sessions.

        Requires MANAGE_USERS. Nobody deletes themselves or a root account
        here, and only root may delete another account holding MANAGE_USERS.
        """
        self.require_capability(actor, Perm.MANAGE_USERS)
        if target.id == actor.user_id:
            raise Forbidden("You cannot delete your own account.")
        if is_root(target.permissions):
            raise Forbidden("Root accounts cannot be deleted.")
        if target.permissions & Perm.MANAGE_USERS and not is_root(actor.permissions):
            raise Forbidden("Only root can delete an administrator.")
        if not self.users.delete_user(target.id):
            raise NotFound("User not found.")
        logger.info("User %s deleted user %s", actor.user_id, target.id)
