"""
api/routes/v1/auth.py -- Registration, session and user management endpoints.

Routes:
  POST   /api/v1/auth/signup          -- stage a registration, mail the link (public)
  GET    /api/v1/auth/verify-email    -- consume a token, create the account (public)
  POST   /api/v1/auth/login           -- password login; sets session cookie (public)
  POST   /api/v1/auth/logout          -- deletes the session, clears cookie (public)
  GET    /api/v1/auth/me              -- current user (requires auth)
  GET    /api/v1/auth/users           -- list accounts (MANAGE_USERS)
  POST   /api/v1/auth/set-admin       -- grant/revoke admin (root only)
  DELETE /api/v1/auth/users/{id}      -- delete account and its sessions (MANAGE_USERS)

Security:
  Login answers an unknown identifier and a wrong password identically
  (AuthGate.login raises the same BadCredentials for both).
  Cache-Control: no-store on login and /me responses.
  Signup returns before the email is sent; delivery runs as a background task
  and its failure is only logged.

Handlers are plain def (not async): every one of them blocks on the database
or on PBKDF2, so FastAPI runs them in its thread pool.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import JSONResponse

from api.models import (
    LoginRequest,
    LoginResponse,
    MessageResponse,
    SetAdminRequest,
    SignupRequest,
    UserMessageResponse,
    UserResponse,
)
from auth.dependencies import SESSION_COOKIE, get_current_identity, require_capability, require_root, session_token
from auth.errors import NotFound, ValidationFailure
from auth.gate import AuthGate, Identity
from auth.models import User
from auth.permissions import Perm, parse_capabilities
from auth.registration import RegistrationService
from core.config import get_settings
from core.mailer import deliver

# Auth policy:
# - POST   /auth/signup, GET /auth/verify-email, POST /auth/login, POST /auth/logout: public
# - GET    /auth/me:          requires auth (get_current_identity)
# - GET    /auth/users:       requires MANAGE_USERS (require_capability)
# - POST   /auth/set-admin:   requires root (require_root)
# - DELETE /auth/users/{id}:  requires MANAGE_USERS (require_capability)
router = APIRouter()


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@router.post("/auth/signup", response_model=MessageResponse, status_code=201)
def signup(request: Request, body: SignupRequest, background_tasks: BackgroundTasks) -> MessageResponse:
    """Stage a registration and schedule the verification email."""
    registration: RegistrationService = request.app.state.registration
    record = registration.signup(body.name, body.email, body.password)
    subject, html = registration.verification_message(record)
    background_tasks.add_task(deliver, request.app.state.mailer, [record.email], subject, html)
    minutes = int(registration.pending_ttl.total_seconds() // 60)
    return MessageResponse(
        message=f"A verification email has been sent. The link is valid for {minutes} minutes."
    )


@router.get("/auth/verify-email", response_model=UserMessageResponse)
def verify_email(request: Request, token: str = Query(default="")) -> UserMessageResponse:
    """Promote the pending registration behind token.

    Unknown, expired and already-used tokens all answer 404 with the same
    message. A name/email taken since signup answers 409.
    """
    registration: RegistrationService = request.app.state.registration
    user = registration.verify(token)
    return UserMessageResponse(
        message="Your email has been verified. You can now log in.",
        user=UserResponse.from_user(user),
    )


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username or email plus password; set the session cookie."""
    gate: AuthGate = request.app.state.gate
    user, session_id = gate.login(body.identifier, body.password)
    max_age = int(gate.sessions.ttl.total_seconds())
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=session_id,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=max_age,
            user=UserResponse.from_user(user),
        ).model_dump(),
    )
    resp.set_cookie(
        SESSION_COOKIE,
        value=session_id,
        httponly=True,
        samesite="lax",
        secure=get_settings().secure_cookies,
        max_age=max_age,
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Delete the presented session (if any) and clear the cookie."""
    gate: AuthGate = request.app.state.gate
    gate.logout(session_token(request))
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    resp.delete_cookie(SESSION_COOKIE)
    return resp


@router.get("/auth/me", response_model=UserResponse)
def me(identity: Identity = Depends(get_current_identity)) -> JSONResponse:
    resp = JSONResponse(content=UserResponse.from_user(identity.user).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# User management
# ---------------------------------------------------------------------------


@router.get("/auth/users", response_model=list[UserResponse])
def list_users(
    request: Request,
    capability: Optional[str] = Query(default=None, description="Comma-separated capability names, e.g. manage_users"),
    identity: Identity = Depends(require_capability(Perm.MANAGE_USERS)),
) -> list[UserResponse]:
    """List accounts, root first, then admins, then users (each by id)."""
    gate: AuthGate = request.app.state.gate
    mask = None
    if capability:
        try:
            mask = parse_capabilities(capability.split(","))
        except ValueError as exc:
            raise ValidationFailure("capability", str(exc)) from None
    return [UserResponse.from_user(u) for u in gate.list_users(identity, capability=mask)]


@router.post("/auth/set-admin", response_model=UserMessageResponse)
def set_admin(
    request: Request,
    body: SetAdminRequest,
    identity: Identity = Depends(require_root),
) -> UserMessageResponse:
    """Grant or revoke administrator rights. Root only."""
    gate: AuthGate = request.app.state.gate
    target = _find_target(gate, body)
    gate.set_admin(identity, target, grant=not body.revoke)
    updated = gate.users.get_by_id(target.id)
    if updated is None:
        raise NotFound("User not found.")
    action = "Revoked" if body.revoke else "Granted"
    return UserMessageResponse(
        message=f'{action} administrator rights for "{updated.name}".',
        user=UserResponse.from_user(updated),
    )


@router.delete("/auth/users/{user_id}", response_model=MessageResponse)
def delete_user(
    request: Request,
    user_id: int,
    identity: Identity = Depends(require_capability(Perm.MANAGE_USERS)),
) -> MessageResponse:
    """Delete an account together with all of its sessions."""
    gate: AuthGate = request.app.state.gate
    target = gate.users.get_by_id(user_id)
    if target is None:
        raise NotFound("User not found.")
    gate.delete_user(identity, target)
    return MessageResponse(message=f"User {user_id} deleted.")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _find_target(gate: AuthGate, body: SetAdminRequest) -> User:
    if body.id is not None:
        target = gate.users.get_by_id(body.id)
    elif body.name:
        target = gate.users.get_by_name(body.name.strip())
    else:
        target = gate.users.get_by_email(body.email.strip().lower())
    if target is None:
        raise NotFound("User not found.")
    return target
