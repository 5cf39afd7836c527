"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for authkeep happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Core auth logic never calls get_settings() itself. The API lifespan and the CLI
read Settings once and inject the pieces the core needs (TokenConfig for the
signer, bcrypt_rounds for the hasher, database_url for the stores).

Security notes:
  [M6] JWT secrets shorter than 32 chars are rejected outright. HMAC-SHA256
       signing relies on key entropy -- a short key weakens every token.

  [M7] In production mode (DEBUG not set or false), a missing secret is a hard
       startup failure. Dev mode generates a random secret with a warning.

  [M8] The access and refresh secrets must differ. Sharing one secret would let
       an access token verify as a refresh token.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authkeep.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'authkeep.db'}"

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhdw]?)\s*$", re.IGNORECASE)
_DURATION_UNITS = {
    "": "seconds",
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
    "w": "weeks",
}


def parse_duration(value: str | int) -> timedelta:
    """Convert an expiry string such as "15m" or "7d" into a timedelta.

    A bare integer (or digit-only string) is read as seconds. Units are
    s, m, h, d, w. Zero and unknown units raise ValueError.
    """
    if isinstance(value, int):
        seconds = value
    else:
        match = _DURATION_RE.match(value)
        if match is None:
            raise ValueError(f"Invalid duration: {value!r} (expected e.g. '15m', '7d', '3600')")
        amount, unit = match.groups()
        seconds = int(timedelta(**{_DURATION_UNITS[unit.lower()]: int(amount)}).total_seconds())
    if seconds <= 0:
        raise ValueError(f"Duration must be positive: {value!r}")
    return timedelta(seconds=seconds)


@dataclass(frozen=True)
class TokenConfig:
    """Secrets and lifetimes for the token signer.

    Built once from Settings and passed to TokenSigner at construction, so
    signing and verification never depend on ambient global state.
    """

    access_secret: str
    refresh_secret: str
    access_ttl: timedelta = timedelta(minutes=15)
    refresh_ttl: timedelta = timedelta(days=7)
    algorithm: str = "HS256"

    def __post_init__(self) -> None:
        if not self.access_secret or not self.refresh_secret:
            raise ValueError("Both access and refresh secrets are required.")
        if self.access_secret == self.refresh_secret:
            raise ValueError("Access and refresh secrets must differ.")  # [M8]


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (DEBUG=true is still required
    there so the secrets get generated).

    Environment variable name mapping: field names are uppercased automatically.
    E.g. `jwt_access_secret` reads from JWT_ACCESS_SECRET.
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
    log_level: str = "INFO"
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev secret or raises, so callers never see "".
    jwt_access_secret: str = ""
    jwt_refresh_secret: str = ""
    jwt_access_expiry: str = "15m"
    jwt_refresh_expiry: str = "7d"

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    auth_rate_limit: str = "10/minute"
    cors_origins: list[str] = ["http://localhost:5173"]
    # Narrow this in production, e.g. ["auth.example.com"].
    allowed_hosts: list[str] = ["*"]

    # Expired refresh-token rows are deleted on this period (seconds).
    purge_interval_seconds: int = 6 * 60 * 60

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("jwt_access_expiry", "jwt_refresh_expiry")
    @classmethod
    def validate_expiry(cls, value: str) -> str:
        parse_duration(value)
        return value

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_rounds(cls, value: int) -> int:
        if not 4 <= value <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return value

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the JWT secret policy [M6][M7][M8].

        Dev mode (DEBUG=true): auto-generate missing secrets with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.
        """
        for field in ("jwt_access_secret", "jwt_refresh_secret"):
            if getattr(self, field):
                continue
            if self.debug:
                setattr(self, field, secrets.token_hex(32))
                logger.warning(
                    "WARNING: Using auto-generated %s. Tokens will not persist across restarts.", field.upper()
                )
            else:
                raise ValueError(
                    f"{field.upper()} is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.jwt_access_secret) < 32 or len(self.jwt_refresh_secret) < 32:
            raise ValueError("JWT secrets must be at least 32 characters.")
        if self.jwt_access_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must differ.")
        return self

    def token_config(self) -> TokenConfig:
        """Return the signer configuration derived from these settings."""
        return TokenConfig(
            access_secret=self.jwt_access_secret,
            refresh_secret=self.jwt_refresh_secret,
            access_ttl=parse_duration(self.jwt_access_expiry),
            refresh_ttl=parse_duration(self.jwt_refresh_expiry),
        )


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
