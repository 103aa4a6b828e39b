#!/usr/bin/env python3
"""
Seedgate admin CLI -- out-of-band operations that the HTTP API never exposes.

Usage:
  python main.py create-root NAME EMAIL      (password read with getpass)
  python main.py sweep

create-root is the only way to provision the root sentinel (-1) permission
mask; the API's permission update path refuses it for every caller.

Configuration comes from the same environment / .env as the API server
(DATABASE_URL, PBKDF2_ITERATIONS, table names, ...).
"""

import argparse
import getpass
import sys

from auth.database import Database
from auth.errors import AuthError, Conflict
from auth.models import User
from auth.passwords import hash_new_password
from auth.pending import PendingStore
from auth.permissions import ROOT
from auth.registration import validate_email, validate_password, validate_username
from auth.sessions import SessionStore
from auth.store import UserStore
from core.config import get_settings


def _create_root(db: Database, name: str, email: str) -> int:
    settings = get_settings()
    name = validate_username(name)
    email = validate_email(email)
    users = UserStore(db)
    # Name and email must be free in users and in live pending registrations.
    if users.get_by_name(name) or users.get_by_email(email) or PendingStore(db).exists_pending(email, name):
        raise Conflict()
    password = getpass.getpass("Root password: ")
    if password != getpass.getpass("Repeat password: "):
        print("  [!] Passwords do not match.")
        return 1
    validate_password(password)
    salt_hex, hash_hex = hash_new_password(password, settings.pbkdf2_iterations)
    user_id = users.create_user(
        User(name=name, email=email, password_salt=salt_hex, password_hash=hash_hex, permissions=ROOT)
    )
    print(f"  Root account '{name}' created (id={user_id}).")
    return 0


def _sweep(db: Database) -> int:
    removed_pending = PendingStore(db).cleanup_expired()
    removed_sessions = SessionStore(db).cleanup_expired()
    print(f"  Removed {removed_pending} expired pending registrations and {removed_sessions} expired sessions.")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="seedgate",
        description="Seedgate admin CLI.",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    root_parser = sub.add_parser("create-root", help="Provision a root account.")
    root_parser.add_argument("name", help="Username (1-15 chars: a-z, 0-9, _, -, CJK).")
    root_parser.add_argument("email", help="Email address.")

    sub.add_parser("sweep", help="Delete expired pending registrations and sessions.")

    args = parser.parse_args(argv)
    settings = get_settings()
    db = Database(settings.database_url, settings.table_config())
    try:
        if args.command == "create-root":
            return _create_root(db, args.name, args.email)
        return _sweep(db)
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
