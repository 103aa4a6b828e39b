"""
auth/errors.py -- Exception taxonomy for the auth core.

Every error carries a machine-readable code, a caller-safe message and the
HTTP status the API layer should answer with. Stores and services raise these;
api/main.py renders them with a single exception handler.

PersistenceError messages never include driver detail. The original exception
is chained (raise ... from exc) and logged server-side by the store.
"""

from __future__ import annotations


class AuthError(Exception):
    code = "auth_error"
    status_code = 400
    default_message = "Request could not be processed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(AuthError):
    """Malformed salt/hash length or other programmer-level bad input."""

    code = "invalid_input"
    default_message = "Invalid input."


class InvalidEncoding(InvalidInput):
    """Stored hex string is empty, odd-length or contains non-hex characters."""

    code = "invalid_encoding"
    default_message = "Invalid hex encoding."


class ValidationFailure(AuthError):
    """User-correctable shape violation. field names the offending input."""

    code = "validation_failed"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(message)


class Conflict(AuthError):
    code = "conflict"
    status_code = 409
    default_message = "That username or email is already in use."


class Unauthenticated(AuthError):
    # One message for missing, unknown and expired sessions.
    code = "unauthorized"
    status_code = 401
    default_message = "Authentication required."


class BadCredentials(Unauthenticated):
    # Same response for an unknown identifier and a wrong password.
    code = "bad_credentials"
    default_message = "Invalid username/email or password."


class Forbidden(AuthError):
    code = "forbidden"
    status_code = 403
    default_message = "You do not have permission to perform this action."


class NotFound(AuthError):
    code = "not_found"
    status_code = 404
    default_message = "Not found."


class PersistenceError(AuthError):
    code = "internal_error"
    status_code = 500
    default_message = "An unexpected error occurred."
