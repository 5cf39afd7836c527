"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Protected routes authenticate with an access token in the
Authorization: Bearer <token> header. The token is verified statelessly by the
TokenSigner stored on app.state; no database read happens here. Routes that
need the full user record ask AuthService for it.

get_current_identity() raises AuthError, which the API exception handler turns
into a 401 envelope:
  - header missing or not Bearer   -> unauthenticated
  - bad signature / malformed      -> token_invalid
  - expired                        -> token_expired

Layer rule: auth/dependencies.py may import from fastapi (for Request) because
this module is part of the FastAPI dependency injection system. No imports
from api/.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import AuthError, ErrorKind
from auth.models import TokenPayload
from auth.tokens import TokenSigner


def get_current_identity(request: Request) -> TokenPayload:
    """Require a valid access token and return its identity claims.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: TokenPayload = Depends(get_current_identity)): ...
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise AuthError(ErrorKind.UNAUTHENTICATED)
    token = auth_header[7:].strip()
    if not token:
        raise AuthError(ErrorKind.UNAUTHENTICATED)

    signer: TokenSigner = request.app.state.signer
    return signer.verify_access_token(token)
