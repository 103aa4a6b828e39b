"""
auth/passwords.py -- PBKDF2 password hashing with separately stored salt.

Security design decisions:
  KDF: PBKDF2-HMAC-SHA512, 32-byte salt, 32-byte output, at least 600,000
       iterations. hashlib.pbkdf2_hmac runs inside OpenSSL, so the work
       factor is paid in C rather than in the interpreter.

  Comparison: verify_password() XOR-accumulates over every byte of the two
       digests and only inspects the accumulator at the end, so the loop does
       the same work wherever the first mismatch sits.

  Failure shape: verify_password() returns False on any derivation error so
       callers cannot tell "bad stored salt" from "bad password".

  Storage: salt and hash are stored as lower-case hex strings (to_hex /
       from_hex).

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import logging
import re
import secrets

from auth.errors import InvalidEncoding, InvalidInput
from core.config import MIN_PBKDF2_ITERATIONS

logger = logging.getLogger("seedgate.auth")

SALT_LENGTH = 32
HASH_LENGTH = 32
DIGEST = "sha512"
PBKDF2_ITERATIONS = MIN_PBKDF2_ITERATIONS

_HEX_RE = re.compile(r"[0-9a-fA-F]+")


# ---------------------------------------------------------------------------
# Derivation
# ---------------------------------------------------------------------------


def generate_salt() -> bytes:
    """Return SALT_LENGTH bytes from the OS CSPRNG."""
    return secrets.token_bytes(SALT_LENGTH)


def derive_hash(password: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    """Derive the stored password hash.

    Raises InvalidInput if the salt is not exactly SALT_LENGTH bytes. The
    salt length is checked here rather than trusted from storage because a
    truncated salt would silently weaken every hash derived from it.
    """
    if not isinstance(salt, (bytes, bytearray)) or len(salt) != SALT_LENGTH:
        raise InvalidInput(f"Salt must be exactly {SALT_LENGTH} bytes.")
    if iterations < 1:
        raise InvalidInput("Iteration count must be positive.")
    return hashlib.pbkdf2_hmac(DIGEST, password.encode("utf-8"), bytes(salt), iterations, dklen=HASH_LENGTH)


def constant_time_equals(a: bytes, b: bytes) -> bool:
    """Compare two byte strings without short-circuiting on the first difference."""
    if len(a) != len(b):
        return False
    mismatch = 0
    for x, y in zip(a, b):
        mismatch |= x ^ y
    return mismatch == 0


def verify_password(password: str, salt: bytes, expected_hash: bytes, iterations: int = PBKDF2_ITERATIONS) -> bool:
    """Return True if password derives to expected_hash under salt.

    Never raises. Any derivation error is logged and reported as a mismatch.
    """
    try:
        actual = derive_hash(password, salt, iterations)
        return constant_time_equals(actual, bytes(expected_hash))
    except (InvalidInput, AttributeError, TypeError, ValueError) as exc:
        logger.warning("Password verification failed: %s", exc)
        return False


def hash_new_password(password: str, iterations: int = PBKDF2_ITERATIONS) -> tuple[str, str]:
    """Generate a fresh salt and return (salt_hex, hash_hex) ready for storage."""
    salt = generate_salt()
    return to_hex(salt), to_hex(derive_hash(password, salt, iterations))


def verify_stored_password(password: str, salt_hex: str, hash_hex: str, iterations: int = PBKDF2_ITERATIONS) -> bool:
    """verify_password() over hex-encoded storage values. Never raises."""
    try:
        salt = from_hex(salt_hex)
        expected = from_hex(hash_hex)
    except InvalidEncoding as exc:
        logger.warning("Stored credential has invalid encoding: %s", exc)
        return False
    return verify_password(password, salt, expected, iterations)


# ---------------------------------------------------------------------------
# Hex encoding
# ---------------------------------------------------------------------------


def to_hex(data: bytes) -> str:
    return bytes(data).hex()


def from_hex(value: str) -> bytes:
    """Decode a hex string produced by to_hex().

    Rejects empty strings, odd lengths and non-hex characters with
    InvalidEncoding. Upper-case digits are accepted on input.
    """
    if not isinstance(value, str) or not value:
        raise InvalidEncoding("Hex string must not be empty.")
    if len(value) % 2 != 0:
        raise InvalidEncoding("Hex string must have an even number of characters.")
    if not _HEX_RE.fullmatch(value):
        raise InvalidEncoding("Hex string contains non-hex characters.")
    return bytes.fromhex(value)
