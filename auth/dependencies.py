"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The bearer session id is read from, in priority order:
  1. the "session" cookie -- set by POST /auth/login for browser clients
  2. an Authorization: Bearer <session id> header -- API clients

get_current_identity() raises Unauthenticated; require_capability() and
require_root() additionally raise Forbidden. api/main.py renders both through
the AuthError handler as 401 / 403.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi because it is part of the
  FastAPI dependency injection system.
"""

from __future__ import annotations

from typing import Callable

from fastapi import Request

from auth.gate import AuthGate, Identity

SESSION_COOKIE = "session"


def session_token(request: Request) -> str | None:
    """Return the presented session id, or None if the request carries none."""
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    return token or None


def get_gate(request: Request) -> AuthGate:
    return request.app.state.gate


def get_current_identity(request: Request) -> Identity:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(identity: Identity = Depends(get_current_identity)): ...
    """
    return get_gate(request).authenticate(session_token(request))


def require_capability(required: int) -> Callable[[Request], Identity]:
    """Build a dependency that requires every bit of required.

        @router.get("/users")
        def route(identity: Identity = Depends(require_capability(Perm.MANAGE_USERS))): ...
    """

    def dependency(request: Request) -> Identity:
        identity = get_current_identity(request)
        return get_gate(request).require_capability(identity, required)

    return dependency


def require_root(request: Request) -> Identity:
    identity = get_current_identity(request)
    return get_gate(request).require_root(identity)
