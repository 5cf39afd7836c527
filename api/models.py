"""
API request and response models for authkeep REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

JSON keys are camelCase on the wire (accessToken, refreshToken, isActive) via
the alias generator; Python code uses snake_case attribute names throughout.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

from auth.models import AuthResult, UserSummary

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

USERNAME_PATTERN = r"^[A-Za-z0-9_.-]+$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt only looks at the first 72 bytes; longer passwords are refused here
# rather than silently truncated.
PASSWORD_MAX_LENGTH = 72

# Identifiers are trimmed before validation. Passwords are never trimmed:
# surrounding whitespace is part of the secret.
_Stripped = Annotated[str, StringConstraints(strip_whitespace=True)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignUpRequest(_CamelModel):
    """Request body for POST /api/v1/auth/signup."""

    username: _Stripped = Field(min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    email: _Stripped = Field(max_length=100, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6, max_length=PASSWORD_MAX_LENGTH)


class SignInRequest(_CamelModel):
    """Request body for POST /api/v1/auth/signin."""

    email: _Stripped = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)


class RefreshTokenRequest(_CamelModel):
    """Request body for POST /auth/refresh-token and /auth/signout.

    refresh_token is optional at this layer: an absent or empty value must
    reach AuthService so it reports missing_token, not a schema error.
    """

    refresh_token: Optional[_Stripped] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserOut(_CamelModel):
    """Public user fields. There is deliberately no password field."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    is_active: Optional[bool] = None
    created_at: Optional[str] = None

    @classmethod
    def from_summary(cls, user: UserSummary, full: bool = False) -> "UserOut":
        """Map a domain UserSummary. Sign-up/sign-in echo only id, username, email."""
        if not full:
            return cls(id=user.id, username=user.username, email=user.email)
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            is_active=user.is_active,
            created_at=user.created_at,
        )


class SessionData(_CamelModel):
    """data payload for signup and signin."""

    model_config = ConfigDict(frozen=True)

    user: UserOut
    access_token: str
    refresh_token: str

    @classmethod
    def from_result(cls, result: AuthResult) -> "SessionData":
        return cls(
            user=UserOut.from_summary(result.user),
            access_token=result.access_token,
            refresh_token=result.refresh_token,
        )


class AccessTokenData(_CamelModel):
    """data payload for POST /auth/refresh-token."""

    model_config = ConfigDict(frozen=True)

    access_token: str


class CurrentUserData(_CamelModel):
    """data payload for GET /auth/me."""

    model_config = ConfigDict(frozen=True)

    user: UserOut


class RevokedData(_CamelModel):
    """data payload for POST /auth/signout-all."""

    model_config = ConfigDict(frozen=True)

    revoked: int


class ApiResponse(_CamelModel):
    """Success envelope: {success, message, data?}."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str
    data: Optional[Any] = None


class ErrorResponse(_CamelModel):
    """Error envelope: {success: false, message, code, details?}.

    code is the ErrorKind value, so clients can branch without parsing
    message text.
    """

    model_config = ConfigDict(frozen=True)

    success: bool = False
    message: str
    code: str
    details: Optional[Any] = None


class HealthResponse(_CamelModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str = "ok"
