"""
auth/service.py -- The token lifecycle: register, authenticate, rotate, sign out.

AuthService composes the password hasher, the token signer and the two stores.
It is the only place that knows the order of operations; the components below
it know nothing about each other.

Session states:
  Unauthenticated --register/authenticate--> Authenticated (access + refresh)
  Authenticated   --rotate_access_token-->   Rotated (new access, same refresh)
  Authenticated   --sign_out-->              SignedOut (refresh revoked)
  Authenticated   --stored expires_at-->     Expired (must authenticate again)

Errors:
  Every caller-driven failure raises AuthError with a specific ErrorKind. The
  API layer renders it; nothing else is needed to choose a status code.
  HashingError and StoreUnavailable propagate as-is and are never retried here.

Security:
  [C1] authenticate() runs a bcrypt check even when the email is unknown, and
       returns the same INVALID_CREDENTIALS kind for unknown email and wrong
       password. ACCOUNT_INACTIVE is reported before the password check, so
       it does reveal that an inactive account exists. Known and accepted.
  [R1] Refresh tokens are not rotated on use. A refresh token stays valid until
       its own expiry or an explicit sign-out.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

from auth.errors import AuthError, ConflictError, ErrorKind, TokenError
from auth.models import AuthResult, RefreshToken, TokenPayload, User, UserSummary
from auth.passwords import PasswordHasher
from auth.store import Database, RefreshTokenStore, UserStore
from auth.tokens import TokenSigner, utcnow

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("authkeep.auth")


class AuthService:
    """Orchestrates the four lifecycle operations plus profile lookup.

    Usage:
        db = Database(settings.database_url)
        service = AuthService(
            db,
            hasher=PasswordHasher(settings.bcrypt_rounds),
            signer=TokenSigner(settings.token_config()),
        )
        result = service.register("alice", "a@x.com", "secret1")
    """

    def __init__(
        self,
        db: Database,
        hasher: PasswordHasher,
        signer: TokenSigner,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self.users = UserStore(db)
        self.refresh_tokens = RefreshTokenStore(db)
        self.hasher = hasher
        self.signer = signer
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> AuthService:
        """Build the service and its collaborators. Used by the API lifespan and the CLI."""
        return cls(
            Database(settings.database_url),
            hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
            signer=TokenSigner(settings.token_config()),
        )

    # ------------------------------------------------------------------
    # Register / authenticate
    # ------------------------------------------------------------------

    def register(self, username: str, email: str, password: str) -> AuthResult:
        """Create a user and open a session for it.

        Email is checked before username so the error for a request that
        collides on both is always DUPLICATE_EMAIL.

        The user row and its refresh token row are written in one transaction:
        if minting or persisting the token fails, the user is rolled back too.
        """
        username = username.strip()
        email = email.strip().lower()
        self._ensure_available(username, email)

        # Explicit "hash before persist" step -- the store never hashes.
        hashed = self.hasher.hash(password)
        user = User(username=username, email=email, hashed_password=hashed)

        try:
            with self.db.transaction() as conn:
                user.id = self.users.create_user(user, conn=conn)
                stored = self.users.get_by_id(user.id, conn=conn)
                result = self._issue_session(stored, conn=conn)
        except ConflictError:
            # Lost a race with a concurrent registration between the checks
            # above and the INSERT. Re-run the checks to name the duplicate.
            self._ensure_available(username, email)
            raise

        logger.info("User registered (user_id=%s)", user.id)
        return result

    def authenticate(self, email: str, password: str) -> AuthResult:
        """Verify credentials and open a new session."""
        user = self.users.get_by_email(email)
        if user is None:
            self.hasher.verify_dummy(password)  # [C1]
            logger.info("Sign-in failed: %s", ErrorKind.INVALID_CREDENTIALS.value)
            raise AuthError(ErrorKind.INVALID_CREDENTIALS)

        if not user.is_active:
            logger.info("Sign-in refused for inactive user_id=%s", user.id)
            raise AuthError(ErrorKind.ACCOUNT_INACTIVE, details="Please contact support")

        if not self.hasher.verify(password, user.hashed_password):
            logger.info("Sign-in failed: %s (user_id=%s)", ErrorKind.INVALID_CREDENTIALS.value, user.id)
            raise AuthError(ErrorKind.INVALID_CREDENTIALS)

        result = self._issue_session(user)
        logger.info("User signed in (user_id=%s)", user.id)
        return result

    # ------------------------------------------------------------------
    # Rotation / sign-out
    # ------------------------------------------------------------------

    def rotate_access_token(self, refresh_token: str | None) -> str:
        """Return a fresh access token for a valid, unrevoked refresh token [R1]."""
        if not refresh_token:
            raise AuthError(ErrorKind.MISSING_TOKEN)

        try:
            payload = self.signer.verify_refresh_token(refresh_token)
        except TokenError as exc:
            # Signature and expiry failures look the same to the caller.
            logger.debug("Refresh token rejected by signer: %s", exc.kind.value)
            raise AuthError(ErrorKind.INVALID_REFRESH_TOKEN) from exc

        record = self.refresh_tokens.find_active(refresh_token, payload.user_id)
        if record is None:
            raise AuthError(ErrorKind.INVALID_REFRESH_TOKEN, details="Token not found or revoked")

        # The stored expiry is authoritative, independent of the JWT's exp.
        if not record.is_usable(self._clock()):
            raise AuthError(ErrorKind.REFRESH_TOKEN_EXPIRED)

        user = self.users.get_by_id(payload.user_id)
        if user is None or not user.is_active:
            raise AuthError(ErrorKind.USER_INACTIVE_OR_MISSING)

        return self.signer.sign_access_token(TokenPayload.for_user(user))

    def sign_out(self, refresh_token: str | None, user_id: int) -> None:
        """Revoke the caller's refresh token. Succeeds even if nothing matched."""
        if not refresh_token:
            raise AuthError(ErrorKind.MISSING_TOKEN)
        if self.refresh_tokens.revoke(refresh_token, user_id):
            logger.info("Refresh token revoked (user_id=%s)", user_id)

    def sign_out_everywhere(self, user_id: int) -> int:
        """Revoke every active refresh token of a user. Returns how many."""
        revoked = self.refresh_tokens.revoke_all(user_id)
        logger.info("Revoked %d refresh token(s) (user_id=%s)", revoked, user_id)
        return revoked

    # ------------------------------------------------------------------
    # Profile / maintenance
    # ------------------------------------------------------------------

    def get_current_user(self, user_id: int) -> UserSummary:
        user = self.users.get_by_id(user_id)
        if user is None:
            raise AuthError(ErrorKind.NOT_FOUND)
        return user.summary()

    def set_active(self, email: str, is_active: bool) -> UserSummary:
        """Activate or deactivate an account. Deactivation also ends its sessions."""
        user = self.users.get_by_email(email)
        if user is None:
            raise AuthError(ErrorKind.NOT_FOUND)
        self.users.set_active(user.id, is_active)
        if not is_active:
            self.sign_out_everywhere(user.id)
        logger.info("User %s (user_id=%s)", "activated" if is_active else "deactivated", user.id)
        return self.get_current_user(user.id)

    def list_sessions(self, email: str) -> list[RefreshToken]:
        user = self.users.get_by_email(email)
        if user is None:
            raise AuthError(ErrorKind.NOT_FOUND)
        return self.refresh_tokens.list_for_user(user.id)

    def set_password(self, email: str, password: str) -> UserSummary:
        """Replace a user's password and end every session opened with the old one."""
        user = self.users.get_by_email(email)
        if user is None:
            raise AuthError(ErrorKind.NOT_FOUND)
        self.users.set_password(user.id, self.hasher.hash(password))
        self.sign_out_everywhere(user.id)
        logger.info("Password reset (user_id=%s)", user.id)
        return user.summary()

    def purge_expired_tokens(self) -> int:
        """Delete refresh-token rows past their stored expiry."""
        removed = self.refresh_tokens.purge_expired(self._clock())
        if removed:
            logger.info("Purged %d expired refresh token(s)", removed)
        return removed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_available(self, username: str, email: str) -> None:
        if self.users.get_by_email(email) is not None:
            raise AuthError(ErrorKind.DUPLICATE_EMAIL, details="Email is already registered")
        if self.users.get_by_username(username) is not None:
            raise AuthError(ErrorKind.DUPLICATE_USERNAME, details="Please choose a different username")

    def _issue_session(self, user: User, conn=None) -> AuthResult:
        """Mint an access + refresh pair and persist the refresh token."""
        payload = TokenPayload.for_user(user)
        access_token = self.signer.sign_access_token(payload)
        refresh_token = self.signer.sign_refresh_token(payload)
        expires_at = self._clock() + self.signer.config.refresh_ttl
        self.refresh_tokens.create(user.id, refresh_token, expires_at, conn=conn)
        return AuthResult(user=user.summary(), access_token=access_token, refresh_token=refresh_token)
