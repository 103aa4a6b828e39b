"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Seedgate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. pbkdf2_iterations -> PBKDF2_ITERATIONS).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Used to keep the KDF work factor at production strength unless
      DEBUG is set.

Table names are collected into a TableConfig value by table_config(). The
database layer receives that value at construction; it never reads settings
on its own.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("seedgate.config")

MIN_PBKDF2_ITERATIONS = 600_000

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'seedgate.db'}"


@dataclass(frozen=True)
class TableConfig:
    """Physical table names for the three auth tables."""

    users: str = "users"
    pending: str = "pending_registrations"
    sessions: str = "sessions"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    app_name: str = "Seed"
    database_url: str = _DEFAULT_DB_URL
    # Public base URL used to build verification links in outgoing email.
    site_url: str = "http://localhost:8000"

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    session_ttl_days: int = 7
    pending_ttl_minutes: int = 30
    pbkdf2_iterations: int = MIN_PBKDF2_ITERATIONS

    # Background sweep of expired pending registrations and sessions.
    sweep_interval_seconds: int = 15 * 60

    # ------------------------------------------------------------------
    # Email (Resend). Empty string means delivery is disabled.
    # ------------------------------------------------------------------

    resend_api_key: str = ""
    from_email: str = ""

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    users_table: str = "users"
    pending_table: str = "pending_registrations"
    sessions_table: str = "sessions"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_work_factor(self) -> "Settings":
        """Refuse a weakened KDF outside debug mode.

        Debug mode accepts any positive iteration count so the test suite does
        not spend most of its time inside PBKDF2. Production refuses to start
        below MIN_PBKDF2_ITERATIONS.
        """
        if self.pbkdf2_iterations < 1:
            raise ValueError("PBKDF2_ITERATIONS must be positive.")
        if self.pbkdf2_iterations < MIN_PBKDF2_ITERATIONS:
            if not self.debug:
                raise ValueError(
                    f"PBKDF2_ITERATIONS must be at least {MIN_PBKDF2_ITERATIONS} in production mode. "
                    "To run with a lower work factor, set DEBUG=true."
                )
            logger.warning("Using reduced PBKDF2 work factor (%d iterations).", self.pbkdf2_iterations)
        if self.session_ttl_days < 1:
            raise ValueError("SESSION_TTL_DAYS must be at least 1.")
        if self.pending_ttl_minutes < 1:
            raise ValueError("PENDING_TTL_MINUTES must be at least 1.")
        return self

    def table_config(self) -> TableConfig:
        return TableConfig(users=self.users_table, pending=self.pending_table, sessions=self.sessions_table)


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
