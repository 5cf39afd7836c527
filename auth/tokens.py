"""
auth/tokens.py -- Signed access and refresh tokens (JWT, HS256).

Security design decisions:
  JWT: python-jose with HS256. Each token class has its own secret, so an
       access token never verifies as a refresh token and vice versa.

  Claims: userId, email, username, iat, exp, jti. jti is a random 128-bit id
       that keeps two tokens minted for the same user in the same second
       distinct -- refresh tokens are stored under a UNIQUE constraint.

  Expiry: jose's own exp check reads the wall clock. We disable it and compare
       exp against the signer's injected clock instead, so the signer is a pure
       function of (secrets, now) and tests can move time explicitly.

  Config: TokenSigner receives a TokenConfig at construction. It never reads
       get_settings() -- the API lifespan and the CLI do that and inject it.

Layer rule: no imports from api/. core.config is allowed for TokenConfig only.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.errors import TokenExpiredError, TokenInvalidError
from auth.models import TokenPayload
from core.config import TokenConfig

logger = logging.getLogger("authkeep.auth.tokens")

# Verified manually against the injected clock -- see module docstring.
_DECODE_OPTIONS = {"verify_exp": False}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenSigner:
    """Stateless creation and verification of access and refresh tokens.

    Usage:
        signer = TokenSigner(settings.token_config())
        token = signer.sign_access_token(TokenPayload(1, "a@x.com", "alice"))
        payload = signer.verify_access_token(token)
    """

    def __init__(self, config: TokenConfig, clock: Callable[[], datetime] = utcnow) -> None:
        self.config = config
        self._clock = clock

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def sign_access_token(self, payload: TokenPayload) -> str:
        return self._sign(payload, self.config.access_secret, self.config.access_ttl)

    def sign_refresh_token(self, payload: TokenPayload) -> str:
        return self._sign(payload, self.config.refresh_secret, self.config.refresh_ttl)

    def _sign(self, payload: TokenPayload, secret: str, ttl: timedelta) -> str:
        issued_at = self._clock()
        claims = {
            "userId": payload.user_id,
            "email": payload.email,
            "username": payload.username,
            "iat": issued_at,
            "exp": issued_at + ttl,
            "jti": secrets.token_hex(16),
        }
        return jwt.encode(claims, secret, algorithm=self.config.algorithm)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_access_token(self, token: str) -> TokenPayload:
        """Return the payload of a valid access token.

        Raises TokenExpiredError past exp, TokenInvalidError for anything else
        (bad signature, refresh token, malformed structure, missing claims).
        """
        return self._verify(token, self.config.access_secret)

    def verify_refresh_token(self, token: str) -> TokenPayload:
        """Same contract as verify_access_token, against the refresh secret."""
        return self._verify(token, self.config.refresh_secret)

    def _verify(self, token: str, secret: str) -> TokenPayload:
        try:
            claims = jwt.decode(token, secret, algorithms=[self.config.algorithm], options=_DECODE_OPTIONS)
        except JWTError as exc:
            raise TokenInvalidError("Token signature or structure is invalid") from exc

        exp = claims.get("exp")
        if not isinstance(exp, (int, float)):
            raise TokenInvalidError("Token has no expiry claim")
        if self._clock().timestamp() >= exp:
            raise TokenExpiredError("Token has expired")

        user_id = claims.get("userId")
        email = claims.get("email")
        username = claims.get("username")
        if not isinstance(user_id, int) or not isinstance(email, str) or not isinstance(username, str):
            raise TokenInvalidError("Token is missing identity claims")
        return TokenPayload(user_id=user_id, email=email, username=username)
