"""
auth/errors.py -- Closed error taxonomy for the auth core.

Every failure the core can report carries an ErrorKind. The kind owns the
stable user-facing message and the HTTP status class, so the transport layer
selects a response deterministically from `exc.kind` alone -- there is no
inspection of exception names or message strings anywhere.

Caller-driven kinds (4xx) are raised by AuthService and rendered by the API
exception handler. Internal kinds (hashing_error, store_unavailable) propagate
unchanged; the core never retries them.

Layer rule: stdlib only. No imports from api/ or core/.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    DUPLICATE_EMAIL = "duplicate_email"
    DUPLICATE_USERNAME = "duplicate_username"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_INACTIVE = "account_inactive"
    MISSING_TOKEN = "missing_token"
    INVALID_REFRESH_TOKEN = "invalid_refresh_token"
    REFRESH_TOKEN_EXPIRED = "refresh_token_expired"
    USER_INACTIVE_OR_MISSING = "user_inactive_or_missing"
    NOT_FOUND = "not_found"
    UNAUTHENTICATED = "unauthenticated"
    TOKEN_INVALID = "token_invalid"
    TOKEN_EXPIRED = "token_expired"
    CONFLICT = "conflict"
    HASHING_ERROR = "hashing_error"
    STORE_UNAVAILABLE = "store_unavailable"

    @property
    def status(self) -> int:
        return _STATUS[self]

    @property
    def message(self) -> str:
        return _MESSAGES[self]

    @property
    def is_internal(self) -> bool:
        return self.status >= 500


_STATUS: dict[ErrorKind, int] = {
    ErrorKind.DUPLICATE_EMAIL: 400,
    ErrorKind.DUPLICATE_USERNAME: 400,
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.ACCOUNT_INACTIVE: 401,
    ErrorKind.MISSING_TOKEN: 400,
    ErrorKind.INVALID_REFRESH_TOKEN: 401,
    ErrorKind.REFRESH_TOKEN_EXPIRED: 401,
    ErrorKind.USER_INACTIVE_OR_MISSING: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.TOKEN_INVALID: 401,
    ErrorKind.TOKEN_EXPIRED: 401,
    ErrorKind.CONFLICT: 400,
    ErrorKind.HASHING_ERROR: 500,
    ErrorKind.STORE_UNAVAILABLE: 500,
}

# Absent-user and wrong-password share INVALID_CREDENTIALS, so the message
# cannot be used to enumerate registered emails.
_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.DUPLICATE_EMAIL: "User already exists",
    ErrorKind.DUPLICATE_USERNAME: "Username already taken",
    ErrorKind.INVALID_CREDENTIALS: "Invalid email or password",
    ErrorKind.ACCOUNT_INACTIVE: "Account is inactive",
    ErrorKind.MISSING_TOKEN: "Refresh token is required",
    ErrorKind.INVALID_REFRESH_TOKEN: "Invalid refresh token",
    ErrorKind.REFRESH_TOKEN_EXPIRED: "Refresh token expired",
    ErrorKind.USER_INACTIVE_OR_MISSING: "User not found or inactive",
    ErrorKind.NOT_FOUND: "User not found",
    ErrorKind.UNAUTHENTICATED: "Access denied. No token provided.",
    ErrorKind.TOKEN_INVALID: "Invalid or expired token",
    ErrorKind.TOKEN_EXPIRED: "Invalid or expired token",
    ErrorKind.CONFLICT: "Duplicate entry",
    ErrorKind.HASHING_ERROR: "Internal server error",
    ErrorKind.STORE_UNAVAILABLE: "Internal server error",
}


class AuthError(Exception):
    """Base class for every error the auth core raises.

    details is an optional human-readable hint for the response envelope
    (e.g. "Email is already registered"). It must never contain secrets.
    """

    kind: ErrorKind = ErrorKind.CONFLICT

    def __init__(self, kind: ErrorKind | None = None, details: str | None = None) -> None:
        if kind is not None:
            self.kind = kind
        self.details = details
        super().__init__(details or self.kind.message)

    @property
    def status(self) -> int:
        return self.kind.status

    @property
    def message(self) -> str:
        return self.kind.message


class HashingError(AuthError):
    """Password hashing failed internally, or a stored hash is malformed."""

    kind = ErrorKind.HASHING_ERROR

    def __init__(self, details: str | None = None) -> None:
        super().__init__(details=details)


class StoreUnavailable(AuthError):
    """The durable store could not be reached. Propagated, never retried here."""

    kind = ErrorKind.STORE_UNAVAILABLE

    def __init__(self, details: str | None = None) -> None:
        super().__init__(details=details)


class ConflictError(AuthError):
    """A store-level uniqueness constraint rejected the write."""

    kind = ErrorKind.CONFLICT

    def __init__(self, details: str | None = None) -> None:
        super().__init__(details=details)


class TokenError(AuthError):
    """Base for signer verification failures."""

    kind = ErrorKind.TOKEN_INVALID

    def __init__(self, details: str | None = None) -> None:
        super().__init__(details=details)


class TokenExpiredError(TokenError):
    kind = ErrorKind.TOKEN_EXPIRED


class TokenInvalidError(TokenError):
    kind = ErrorKind.TOKEN_INVALID
