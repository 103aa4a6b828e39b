"""
auth/registration.py -- Double opt-in signup: stage, mail a link, promote.

signup() validates the submitted fields, rejects identities that are already
taken, hashes the password and stages a PendingRegistration with a random
single-use token. It does not send mail itself: the caller schedules the
message from verification_message() as a background task, so the response
never waits on (or fails because of) email delivery.

verify() consumes a token:
  - unknown, expired or already-consumed token  -> NotFound, one message
  - name/email taken since signup              -> pending row deleted, Conflict
  - datastore failure                          -> PersistenceError, row kept
  - otherwise                                  -> the new User

Layer rule: no imports from api/.
"""

from __future__ import annotations

import html
import logging
import re
import secrets
from datetime import timedelta
from urllib.parse import quote

from auth.database import Clock, utc_now
from auth.errors import Conflict, NotFound, ValidationFailure
from auth.models import PendingRegistration, User
from auth.passwords import PBKDF2_ITERATIONS, hash_new_password
from auth.pending import PendingStore
from auth.permissions import USER_PRESET
from auth.store import UserStore

logger = logging.getLogger("seedgate.auth")

USERNAME_MAX_LENGTH = 15
PASSWORD_MIN_LENGTH = 12
PASSWORD_MAX_LENGTH = 256

INVALID_LINK_MESSAGE = "This verification link is invalid or has expired. Please sign up again."

_USERNAME_RE = re.compile(r"^[一-龥a-z0-9_-]+$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_CJK_RE = re.compile(r"[一-龥]")
_TOKEN_BYTES = 32


# ---------------------------------------------------------------------------
# Field validation
# ---------------------------------------------------------------------------


def validate_username(name: str) -> str:
    """Return the trimmed username or raise ValidationFailure("name", ...)."""
    trimmed = name.strip()
    if not trimmed or len(trimmed) > USERNAME_MAX_LENGTH:
        raise ValidationFailure("name", f"Username must be 1-{USERNAME_MAX_LENGTH} characters long.")
    if not _USERNAME_RE.match(trimmed):
        raise ValidationFailure(
            "name",
            "Username may only contain Chinese characters, lower-case letters, digits, '_' and '-'.",
        )
    if trimmed.isdigit():
        raise ValidationFailure("name", "Username cannot consist of digits only.")
    return trimmed


def validate_email(email: str) -> str:
    """Return the lower-cased email or raise ValidationFailure("email", ...)."""
    value = email.strip()
    if not _EMAIL_RE.match(value) or len(value) > 320:
        raise ValidationFailure("email", "Email address is not valid.")
    return value.lower()


def validate_password(password: str) -> None:
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationFailure("password", f"Password must be at least {PASSWORD_MIN_LENGTH} characters long.")
    if len(password) > PASSWORD_MAX_LENGTH:
        raise ValidationFailure("password", f"Password must be at most {PASSWORD_MAX_LENGTH} characters long.")
    if _CJK_RE.search(password):
        raise ValidationFailure("password", "Password cannot contain Chinese characters.")


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class RegistrationService:
    def __init__(
        self,
        users: UserStore,
        pending: PendingStore,
        *,
        site_url: str,
        app_name: str = "Seed",
        pending_ttl: timedelta = timedelta(minutes=30),
        iterations: int = PBKDF2_ITERATIONS,
        clock: Clock = utc_now,
    ) -> None:
        self.users = users
        self.pending = pending
        self.site_url = site_url.rstrip("/")
        self.app_name = app_name
        self.pending_ttl = pending_ttl
        self.iterations = iterations
        self._clock = clock

    def signup(self, name: str, email: str, password: str) -> PendingRegistration:
        """Stage a new registration and return it (token included).

        Raises ValidationFailure for malformed fields and Conflict if the name
        or email is held by a user or a live pending registration. The
        existence checks run before hashing so duplicate signups cost no KDF
        work; the UNIQUE constraints still decide any race.
        """
        name = validate_username(name)
        email = validate_email(email)
        validate_password(password)

        if (
            self.users.get_by_email(email) is not None
            or self.users.get_by_name(name) is not None
            or self.pending.exists_pending(email, name)
        ):
            raise Conflict()

        salt_hex, hash_hex = hash_new_password(password, self.iterations)
        now = self._clock()
        record = PendingRegistration(
            name=name,
            email=email,
            password_salt=salt_hex,
            password_hash=hash_hex,
            token=secrets.token_urlsafe(_TOKEN_BYTES),
            created_at=now,
            expires_at=now + self.pending_ttl,
        )
        record.id = self.pending.create(record)
        logger.info("Pending registration %s created for %s", record.id, name)
        return record

    def verification_link(self, record: PendingRegistration) -> str:
        return f"{self.site_url}/api/v1/auth/verify-email?token={quote(record.token, safe='')}"

    def verification_message(self, record: PendingRegistration) -> tuple[str, str]:
        """Return (subject, html) for the verification email."""
        link = html.escape(self.verification_link(record), quote=True)
        minutes = int(self.pending_ttl.total_seconds() // 60)
        app = html.escape(self.app_name)
        subject = f"Please verify your email - {self.app_name}"
        body = (
            "<p>Hello!</p>"
            f"<p>You are registering a {app} account. Click the link below to verify your email address:</p>"
            f'<p><a href="{link}">Verify email</a></p>'
            f"<p>This link expires in {minutes} minutes.</p>"
            "<p>If you did not request this, you can ignore this message.</p>"
        )
        return subject, body

    def verify(self, token: str) -> User:
        """Promote the pending registration behind token into a permanent user."""
        record = self.pending.find_by_token(token)
        if record is None:
            raise NotFound(INVALID_LINK_MESSAGE)

        try:
            user_id = self.pending.promote(record, USER_PRESET)
        except Conflict:
            # The slot was taken after signup; this registration can never succeed.
            self.pending.delete_by_token(record.token)
            raise Conflict("That username or email has already been registered. Please sign up again.") from None

        if user_id is None:
            raise NotFound(INVALID_LINK_MESSAGE)

        logger.info("Pending registration %s promoted to user %s", record.id, user_id)
        user = self.users.get_by_id(user_id)
        if user is None:
            raise NotFound(INVALID_LINK_MESSAGE)
        return user

    def cleanup_expired(self) -> int:
        return self.pending.cleanup_expired()
