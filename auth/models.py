"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these classes only own the shape.

Identifier is the login-time union "email or username". It is resolved once at
the boundary by parse_identifier() so nothing downstream sniffs strings for
an "@" again.

Timestamps are timezone-aware UTC datetimes. The stores convert to and from
the fixed-width ISO strings kept in the database.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Union

from auth.permissions import USER_PRESET, role_of


@dataclass
class User:
    """A permanent account.

    password_salt / password_hash are lower-case hex strings. email is stored
    lower-cased; the repository never normalises it on lookup.
    """

    name: str
    email: str
    password_salt: str
    password_hash: str
    permissions: int = USER_PRESET
    id: int | None = None
    created_at: datetime | None = None

    @property
    def role(self) -> str:
        return role_of(self.permissions)


@dataclass
class PendingRegistration:
    """An unverified signup awaiting its email confirmation.

    Never updated in place: it is inserted once, then either promoted (and
    deleted) or swept after expires_at.
    """

    name: str
    email: str
    password_salt: str
    password_hash: str
    token: str
    expires_at: datetime
    created_at: datetime | None = None
    id: int | None = None


@dataclass
class Session:
    session_id: str
    user_id: int
    expires_at: datetime


# ---------------------------------------------------------------------------
# Login identifier
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EmailIdentifier:
    value: str  # already lower-cased


@dataclass(frozen=True)
class UsernameIdentifier:
    value: str  # exact, case-sensitive


Identifier = Union[EmailIdentifier, UsernameIdentifier]


def parse_identifier(raw: str) -> Identifier:
    """Classify a submitted login identifier.

    Usernames cannot contain "@", so its presence is unambiguous. Emails are
    lower-cased here, once.
    """
    value = raw.strip()
    if "@" in value:
        return EmailIdentifier(value.lower())
    return UsernameIdentifier(value)
