"""
auth/dependencies.py -- FastAPI Depends() helpers and cookie transport.

The core is agnostic to how bearer tokens travel. The reference binding
accepts them two ways, checked in priority order:
  1. httpOnly cookies ("access_token" / "refresh_token") -- browser clients.
  2. Authorization: Bearer <token> header -- API clients.

get_current_identity() raises HTTP 401/403 with the error kind's code if the
request is not authenticated.

Layer rule: this module may import from fastapi because it is part of the
FastAPI dependency injection system. Nothing else in auth/ does.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, Response

from auth.errors import AuthError
from auth.models import AuthContext, SessionTokens
from auth.service import AuthService

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"


def bearer_token(request: Request) -> str | None:
    """Return the access token from the cookie or the Authorization header, if any."""
    token = request.cookies.get(ACCESS_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    return token or None


def get_current_identity(request: Request) -> AuthContext:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(ctx: AuthContext = Depends(get_current_identity)): ...
    """
    token = bearer_token(request)
    if not token:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    service: AuthService = request.app.state.auth_service
    try:
        return service.authenticate(token)
    except AuthError as exc:
        raise HTTPException(
            status_code=exc.status_code,
            detail={"code": exc.code, "message": exc.message},
        ) from exc


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookies(response: Response, tokens: SessionTokens, secure: bool = False) -> None:
    """Write both tokens as httpOnly cookies whose max_age matches the token lifetimes.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="strict": never sent on cross-site requests (CSRF mitigation).
    The refresh cookie is scoped to the auth routes only.
    """
    access_max_age = int((tokens.access_expires_at - tokens.issued_at).total_seconds())
    refresh_max_age = int((tokens.refresh_expires_at - tokens.issued_at).total_seconds())
    response.set_cookie(
        ACCESS_COOKIE,
        value=tokens.access_token,
        httponly=True,
        samesite="strict",
        secure=secure,
        max_age=max(access_max_age, 0),
    )
    response.set_cookie(
        REFRESH_COOKIE,
        value=tokens.refresh_token,
        httponly=True,
        samesite="strict",
        secure=secure,
        max_age=max(refresh_max_age, 0),
        path="/api/v1/auth",
    )


def clear_auth_cookies(response: Response) -> None:
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE, path="/api/v1/auth")
