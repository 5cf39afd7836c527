"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/signup         -- register; returns user + token pair (201)
  POST /api/v1/auth/signin         -- password login; returns user + token pair
  POST /api/v1/auth/refresh-token  -- new access token from a refresh token
  POST /api/v1/auth/signout        -- revoke one refresh token (requires auth)
  POST /api/v1/auth/signout-all    -- revoke all refresh tokens (requires auth)
  GET  /api/v1/auth/me             -- current user profile (requires auth)

Handlers are plain `def` functions: bcrypt and SQLAlchemy calls block, so
FastAPI runs them in the thread pool and concurrent requests do not wait on
each other.

Errors: handlers do not catch AuthError. It propagates to the exception
handler in api/main.py, which maps exc.kind to status + envelope.

Security:
  [H2] signup and signin are rate-limited per client IP (AUTH_RATE_LIMIT).
  [M5] Cache-Control: no-store on every response that carries tokens.
  IDOR guard: signout passes the caller's id from the access token to the
  service; the store's WHERE clause requires both token and owner to match.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import auth_rate_limit, limiter
from api.models import (
    AccessTokenData,
    ApiResponse,
    CurrentUserData,
    RefreshTokenRequest,
    RevokedData,
    SessionData,
    SignInRequest,
    SignUpRequest,
    UserOut,
)
from auth.dependencies import get_current_identity
from auth.models import TokenPayload
from auth.service import AuthService

# Auth policy:
# - POST /api/v1/auth/signup:        public, rate limited
# - POST /api/v1/auth/signin:        public, rate limited
# - POST /api/v1/auth/refresh-token: public -- the refresh token is the credential
# - POST /api/v1/auth/signout:       requires access token (get_current_identity)
# - POST /api/v1/auth/signout-all:   requires access token (get_current_identity)
# - GET  /api/v1/auth/me:            requires access token (get_current_identity)
router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _envelope(message: str, data=None, status_code: int = 200, no_store: bool = False) -> JSONResponse:
    payload = data.model_dump(by_alias=True, exclude_none=True) if data is not None else None
    body = ApiResponse(message=message, data=payload)
    resp = JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True, exclude_none=True))
    if no_store:
        resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(auth_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/signup", status_code=201)
def sign_up(request: Request, body: SignUpRequest) -> JSONResponse:
    """Register a new account and return its first access/refresh pair."""
    result = _service(request).register(body.username, body.email, body.password)
    return _envelope("User registered successfully", SessionData.from_result(result), 201, no_store=True)


@limiter.limit(auth_rate_limit)  # [H2]
@router.post("/auth/signin")
def sign_in(request: Request, body: SignInRequest) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same 401 body.
    """
    result = _service(request).authenticate(body.email, body.password)
    return _envelope("Sign in successful", SessionData.from_result(result), no_store=True)


@router.post("/auth/refresh-token")
def refresh_access_token(request: Request, body: RefreshTokenRequest) -> JSONResponse:
    """Issue a new access token. The refresh token is not rotated."""
    access_token = _service(request).rotate_access_token(body.refresh_token)
    return _envelope(
        "Access token refreshed successfully",
        AccessTokenData(access_token=access_token),
        no_store=True,
    )


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/signout")
def sign_out(
    request: Request,
    body: RefreshTokenRequest,
    identity: TokenPayload = Depends(get_current_identity),
) -> JSONResponse:
    """Revoke the given refresh token if it belongs to the caller. Idempotent."""
    _service(request).sign_out(body.refresh_token, identity.user_id)
    return _envelope("Signed out successfully")


@router.post("/auth/signout-all")
def sign_out_everywhere(
    request: Request,
    identity: TokenPayload = Depends(get_current_identity),
) -> JSONResponse:
    """Revoke every refresh token the caller holds."""
    revoked = _service(request).sign_out_everywhere(identity.user_id)
    return _envelope("Signed out of all sessions", RevokedData(revoked=revoked))


@router.get("/auth/me")
def me(request: Request, identity: TokenPayload = Depends(get_current_identity)) -> JSONResponse:
    """Return the profile of the currently authenticated user."""
    user = _service(request).get_current_user(identity.user_id)
    return _envelope("User retrieved successfully", CurrentUserData(user=UserOut.from_summary(user, full=True)))
