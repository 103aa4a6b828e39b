"""
api/main.py -- FastAPI application entry point for Seedgate.

Exposes the auth core over HTTP: signup + email verification, password
login, bearer sessions and root/admin user management.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware        -- adds CORS headers for allowed browser origins
  2. log_requests          -- method, path, status and latency for every request

Lifespan handles startup (database, stores, services, sweep task) and
shutdown (cancel sweep task, dispose engine) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.database import Clock, Database, utc_now
from auth.errors import AuthError, PersistenceError, ValidationFailure
from auth.gate import AuthGate
from auth.pending import PendingStore
from auth.registration import RegistrationService
from auth.sessions import SessionStore
from auth.store import UserStore
from core.config import Settings, get_settings
from core.mailer import EmailSender, ResendMailer

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("seedgate.api")


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def wire_services(app: FastAPI, db: Database, settings: Settings, mailer: EmailSender, clock: Clock = utc_now) -> None:
    """Build every store and service on top of db and attach them to app.state.

    Shared by the real lifespan and the test lifespan so both wire the app
    identically; only the database URL, mailer and clock differ.
    """
    users = UserStore(db, clock=clock)
    sessions = SessionStore(db, ttl=timedelta(days=settings.session_ttl_days), clock=clock)
    pending = PendingStore(db, clock=clock)
    app.state.db = db
    app.state.mailer = mailer
    app.state.gate = AuthGate(users, sessions, iterations=settings.pbkdf2_iterations)
    app.state.registration = RegistrationService(
        users,
        pending,
        site_url=settings.site_url,
        app_name=settings.app_name,
        pending_ttl=timedelta(minutes=settings.pending_ttl_minutes),
        iterations=settings.pbkdf2_iterations,
        clock=clock,
    )


def sweep_expired(app: FastAPI) -> tuple[int, int]:
    """Delete expired pending registrations and sessions. Returns (pending, sessions)."""
    removed_pending = app.state.registration.cleanup_expired()
    removed_sessions = app.state.gate.sessions.cleanup_expired()
    return removed_pending, removed_sessions


# ---------------------------------------------------------------------------
# Background sweep task
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI, interval: int) -> None:
    """Sweep expired rows every interval seconds.

    Runs the blocking sweep in a worker thread. A failed sweep is logged by
    the store and retried on the next tick; CancelledError from shutdown
    propagates out of asyncio.sleep and ends the loop.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            removed_pending, removed_sessions = await asyncio.to_thread(sweep_expired, app)
        except PersistenceError:
            continue
        if removed_pending or removed_sessions:
            logger.info("Sweep removed %d pending registrations, %d sessions", removed_pending, removed_sessions)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    settings = get_settings()
    logger.info("Seedgate API starting up")
    db = Database(settings.database_url, settings.table_config())
    wire_services(app, db, settings, ResendMailer(settings.resend_api_key, settings.from_email))
    if not settings.resend_api_key or not settings.from_email:
        logger.warning("RESEND_API_KEY / FROM_EMAIL not set -- verification emails will not be delivered")
    logger.info("Auth initialized (users=%d)", app.state.gate.users.count_users())
    app.state.sweep_task = asyncio.create_task(_sweep_loop(app, settings.sweep_interval_seconds))

    yield

    app.state.sweep_task.cancel()
    app.state.db.close()
    logger.info("Seedgate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Seedgate API",
    description="Credential, session and permission core: signup with email verification, login, admin management.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log one line per request. Credentials (cookie, Authorization) are never logged."""
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    level = logging.WARNING if response.status_code >= 500 else logging.INFO
    peer = request.client.host if request.client else "-"
    logger.log(
        level, "%s %s -> %d (%.1fms, %s)", request.method, request.url.path, response.status_code, elapsed_ms, peer
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every failure leaves the API as the same ErrorResponse envelope.
# ---------------------------------------------------------------------------


def _error_response(
    status_code: int, code: str, message: str, detail: str | None = None, field: str | None = None
) -> JSONResponse:
    envelope = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail, field=field))
    return JSONResponse(status_code=status_code, content=envelope.model_dump())


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render domain errors raised by the auth core.

    PersistenceError carries only a generic message; the store already logged
    the driver exception with full context.
    """
    field = exc.field if isinstance(exc, ValidationFailure) else None
    return _error_response(exc.status_code, exc.code, exc.message, field=field)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Malformed JSON or wrong types; field rules proper answer 400 via ValidationFailure.
    return _error_response(422, "validation_error", "Request validation failed.", detail=str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Routing errors (404, 405) raised by Starlette itself."""
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort. The exception is logged; the body stays generic."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    db_ok = request.app.state.db.ping()
    return HealthResponse(version=VERSION, components={"app": "ok", "database": "ok" if db_ok else "error"})
