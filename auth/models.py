"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores, the signer and the service do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """A registered identity.

    email is stored trimmed and lowercased; username keeps its case but both
    are compared case-insensitively by the store.

    hashed_password is the bcrypt hash computed by AuthService before the
    record is persisted. It never leaves the auth core -- UserSummary is the
    only user shape handed to callers.
    """

    username: str
    email: str
    hashed_password: str
    id: int | None = None
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None

    def summary(self) -> UserSummary:
        return UserSummary(
            id=self.id,
            username=self.username,
            email=self.email,
            is_active=self.is_active,
            created_at=self.created_at,
        )


@dataclass
class RefreshToken:
    """A persisted refresh token.

    token is the full serialized JWT. is_revoked only ever flips False -> True.
    A record is usable while is_revoked is False and now < expires_at.
    """

    user_id: int
    token: str
    expires_at: datetime
    id: int | None = None
    is_revoked: bool = False
    created_at: str | None = None

    def is_usable(self, now: datetime) -> bool:
        return not self.is_revoked and now < self.expires_at


@dataclass(frozen=True)
class TokenPayload:
    """Identity claims embedded in both access and refresh tokens."""

    user_id: int
    email: str
    username: str

    @classmethod
    def for_user(cls, user: User) -> TokenPayload:
        return cls(user_id=user.id, email=user.email, username=user.username)


@dataclass(frozen=True)
class UserSummary:
    """Non-secret profile fields returned to callers."""

    id: int
    username: str
    email: str
    is_active: bool = True
    created_at: str | None = None


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a successful register or authenticate call."""

    user: UserSummary
    access_token: str
    refresh_token: str
