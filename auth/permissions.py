"""
auth/permissions.py -- Bitmask capability model.

Each bit of a user's permissions integer grants one atomic capability. The
value -1 (every bit set) is the root sentinel: it grants every capability,
including ones added after the account was provisioned.

Role names are derived from the mask for display only. Authorization
decisions always go through has_permission() / is_root().
"""

from __future__ import annotations

from enum import IntFlag
from typing import Iterable


class Perm(IntFlag):
    READ = 1 << 0
    WRITE = 1 << 1
    DELETE = 1 << 2
    MANAGE_USERS = 1 << 3
    EXPORT_DATA = 1 << 4
    AUDIT_LOGS = 1 << 5


ROOT = -1

# Presets used at account creation and by the grant/revoke admin endpoint.
USER_PRESET = int(Perm.READ)
ADMIN_PRESET = int(Perm.READ | Perm.WRITE | Perm.DELETE | Perm.MANAGE_USERS)

ROLE_ROOT = "root"
ROLE_ADMIN = "admin"
ROLE_USER = "user"


def is_root(mask: int) -> bool:
    return mask == ROOT


def has_permission(user_mask: int, required: int) -> bool:
    """Return True if user_mask holds every bit set in required.

    Root bypasses the bit check entirely.
    """
    if is_root(user_mask):
        return True
    required = int(required)
    return (user_mask & required) == required


def labels_of(mask: int) -> set[str]:
    """Return the lower-case capability names granted by mask."""
    if is_root(mask):
        return {p.name.lower() for p in Perm}
    return {p.name.lower() for p in Perm if mask & p}


def role_of(mask: int) -> str:
    if is_root(mask):
        return ROLE_ROOT
    if mask & Perm.MANAGE_USERS:
        return ROLE_ADMIN
    return ROLE_USER


def parse_capabilities(names: Iterable[str]) -> int:
    """Resolve capability names ("read", "manage_users", ...) to a mask.

    Raises ValueError naming the first unknown capability.
    """
    mask = 0
    for raw in names:
        name = raw.strip().upper()
        if not name:
            continue
        try:
            mask |= Perm[name]
        except KeyError:
            raise ValueError(f"Unknown capability: {raw.strip()!r}") from None
    return int(mask)
