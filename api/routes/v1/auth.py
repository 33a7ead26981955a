"""
api/routes/v1/auth.py -- Session and account-recovery REST endpoints.

Routes:
  POST   /api/v1/auth/login                -- password login; returns tokens and sets cookies
  POST   /api/v1/auth/refresh              -- exchange a refresh token for a new session
  POST   /api/v1/auth/logout               -- revoke the presented session; clears cookies
  POST   /api/v1/auth/forgot-password      -- issue a reset secret (always the same answer)
  POST   /api/v1/auth/reset-password       -- consume a reset secret and set a new password
  POST   /api/v1/auth/verify-email         -- consume an email verification secret
  POST   /api/v1/auth/verify-email/request -- issue a verification secret (requires auth)
  GET    /api/v1/auth/me                   -- current identity (requires auth)
  DELETE /api/v1/auth/sessions/{id}        -- revoke one of your own sessions (requires auth)

Security:
  POST /login and /forgot-password are rate-limited per IP (LOGIN_RATE_LIMIT).
  AuthService.login() provides timing equalization -- never inline the
  lookup + verify here.
  Cache-Control: no-store on every response that carries tokens.
  IDOR guard: DELETE /sessions/{id} answers 404 for sessions owned by someone else.

Errors raised by the core (auth.errors.AuthError) propagate to the handler
in api/main.py, which maps them onto the ErrorResponse envelope.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    ForgotPasswordRequest,
    LoginRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    ResetPasswordRequest,
    TokenResponse,
    VerifyEmailRequest,
)
from auth.dependencies import (
    REFRESH_COOKIE,
    bearer_token,
    clear_auth_cookies,
    get_current_identity,
    set_auth_cookies,
)
from auth.errors import NotFound, TokenInvalid
from auth.models import AuthContext, SessionTokens
from auth.service import AuthService
from auth.sessions import normalize_session_id
from core.config import get_settings

# Auth policy:
# - POST   /api/v1/auth/login:                public -- rate limited
# - POST   /api/v1/auth/refresh:              public -- the refresh token is the credential
# - POST   /api/v1/auth/logout:               public -- an unusable token still clears cookies
# - POST   /api/v1/auth/forgot-password:      public -- rate limited, never reveals account existence
# - POST   /api/v1/auth/reset-password:       public -- the reset secret is the credential
# - POST   /api/v1/auth/verify-email:         public -- the verification secret is the credential
# - POST   /api/v1/auth/verify-email/request: requires auth (get_current_identity)
# - GET    /api/v1/auth/me:                   requires auth (get_current_identity)
# - DELETE /api/v1/auth/sessions/{id}:        requires auth + ownership check
router = APIRouter()

FORGOT_PASSWORD_MESSAGE = "If an account exists for that email, a reset link has been sent."


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _user_agent(request: Request) -> str:
    return request.headers.get("User-Agent", "unknown")


def _token_response(tokens: SessionTokens) -> JSONResponse:
    resp = JSONResponse(status_code=200, content=TokenResponse.from_tokens(tokens).model_dump())
    set_auth_cookies(resp, tokens, secure=get_settings().secure_cookies)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@limiter.limit(login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=TokenResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return tokens and set cookies.

    Unknown email and wrong password both answer 401 invalid_credentials.
    """
    tokens = _service(request).login(body.email, body.password, _client_ip(request), _user_agent(request))
    return _token_response(tokens)


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, body: RefreshRequest | None = None) -> JSONResponse:
    """Rotate a refresh token. The body value wins over the cookie."""
    token = (body.refresh_token if body else None) or request.cookies.get(REFRESH_COOKIE)
    if not token:
        raise TokenInvalid()
    tokens = _service(request).refresh(token, _client_ip(request), _user_agent(request))
    return _token_response(tokens)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Revoke the session behind the presented access token and clear cookies."""
    token = bearer_token(request)
    if token:
        _service(request).logout(token)
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    clear_auth_cookies(resp)
    return resp


@router.delete("/auth/sessions/{session_id}", status_code=204)
def revoke_session(
    request: Request,
    session_id: str,
    ctx: AuthContext = Depends(get_current_identity),
) -> Response:
    """Revoke one of the caller's sessions by id. Other users' sessions look like missing ones."""
    service = _service(request)
    sid = normalize_session_id(session_id)
    session = service.session_store.get(sid) if sid else None
    if session is None or session.user_id != ctx.user_id:
        raise NotFound("Session not found.")
    service.session_manager.invalidate_session_by_id(sid)
    return Response(status_code=204)


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, ctx: AuthContext = Depends(get_current_identity)) -> MeResponse:
    """Return identity information for the currently authenticated session."""
    user = _service(request).users.get_user_by_id(ctx.user_id)
    if user is None:
        raise NotFound("User not found.")
    return MeResponse(
        user_id=user.id,
        email=user.email,
        email_verified=user.email_verified,
        session_id=ctx.session_id,
    )


# ---------------------------------------------------------------------------
# Recovery
# ---------------------------------------------------------------------------


@limiter.limit(login_rate_limit)
@router.post("/auth/forgot-password", response_model=MessageResponse, status_code=202)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Start a password reset. The answer is identical whether or not the account exists."""
    _service(request).forgot_password(body.email, _client_ip(request))
    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Consume a reset secret. Every session of the user is revoked on success."""
    _service(request).reset_password(body.user_id, body.token, body.password)
    return MessageResponse(message="Password has been reset. Please log in again.")


@router.post("/auth/verify-email", response_model=MessageResponse)
def verify_email(request: Request, body: VerifyEmailRequest) -> MessageResponse:
    _service(request).verify_email(body.user_id, body.token)
    return MessageResponse(message="Email verified.")


@router.post("/auth/verify-email/request", response_model=MessageResponse, status_code=202)
def request_email_verification(
    request: Request,
    ctx: AuthContext = Depends(get_current_identity),
) -> MessageResponse:
    _service(request).request_email_verification(ctx.user_id, _client_ip(request))
    return MessageResponse(message="If the address is not yet verified, a verification link has been sent.")
