"""
api/routes/v1/auth.py -- Registration, email OTP verification, and token endpoints.

Routes:
  POST /api/v1/auth/register        -- create customer, email a verification OTP
  POST /api/v1/auth/verify-email    -- check OTP; mark verified; token + session
  POST /api/v1/auth/login           -- password login; token + session
  POST /api/v1/auth/resend-otp      -- issue a fresh OTP (overwrites the old one)
  GET  /api/v1/auth/me              -- current user (requires auth)
  POST /api/v1/auth/refresh-token   -- new token for the current user (requires auth)
  GET  /api/v1/auth/sessions        -- caller's unexpired session records (requires auth)
  POST /api/v1/auth/token           -- re-validate a token, reissue a fresh one
  POST /api/v1/auth/service-token   -- mint a service token (admin only)
  GET  /api/v1/auth/service-check   -- echo the calling service (service token only)
  POST /api/v1/auth/logout          -- clear the jwt cookie

Security:
  [C1] CredentialStore.authenticate() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries a token.
  OTP codes travel only in the email body. They are never logged or returned.
  A failed OTP check never clears the pending code; only a successful one does.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import (
    EmailRequest,
    LoginRequest,
    RegisterRequest,
    ServiceTokenRequest,
    TokenRequest,
    VerifyEmailRequest,
    envelope,
)
from auth.dependencies import authorize, get_current_user, require_service
from auth.models import ROLE_ADMIN, User
from auth.tokens import clear_auth_cookie, parse_duration, set_auth_cookie
from core.errors import (
    AccountDeactivated,
    BadRequest,
    InvalidCredentials,
    InvalidOrExpiredOTP,
    NotFound,
)
from core.mailer import PURPOSE_REGISTRATION

logger = logging.getLogger("storefront.auth")

# Auth policy:
# - register, verify-email, login, resend-otp, token, logout: public
# - me, refresh-token, sessions: requires auth (get_current_user)
# - service-token: requires admin (authorize("admin"))
# - service-check: requires a service token (require_service)
router = APIRouter()


def _token_response(
    request: Request,
    user: User,
    status_code: int = 200,
    message: str | None = None,
    **data,
) -> JSONResponse:
    """Issue a token for `user` and return it in the envelope and the jwt cookie."""
    settings = request.app.state.settings
    token = request.app.state.tokens.issue(user)
    resp = JSONResponse(
        status_code=status_code,
        content=envelope({"token": token, **data, "user": user.public_dict()}, message=message),
    )
    set_auth_cookie(resp, token, settings)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Registration and email verification
# ---------------------------------------------------------------------------


@router.post("/auth/register", status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a customer account and email a verification code.

    The account exists even if the email fails (502); the client recovers
    with POST /auth/resend-otp.
    """
    state = request.app.state
    user = state.credentials.create_user(body.name, body.email, body.password)
    code = state.otp.issue(user)
    state.mailer.send_otp(user.email, code, user.name, PURPOSE_REGISTRATION)
    logger.info("User registered user_id=%s", user.id)
    return JSONResponse(
        status_code=201,
        content=envelope(
            {"user": user.public_dict()},
            message="User registered successfully. Please verify your email with the OTP sent to your email address.",
        ),
    )


@router.post("/auth/verify-email")
def verify_email(request: Request, body: VerifyEmailRequest) -> JSONResponse:
    """Check the OTP; on success mark the user verified and start a session."""
    state = request.app.state
    user = state.credentials.find_by_email(body.email, include_secrets=True)
    if user is None:
        raise NotFound("User not found")
    if not state.otp.verify(user, body.otp):
        logger.info("OTP verification failed user_id=%s", user.id)
        raise InvalidOrExpiredOTP()

    state.user_store.mark_verified(user.id)
    user = state.credentials.find_by_id(user.id)
    session = state.sessions.record(user)
    logger.info("Email verified user_id=%s", user.id)
    return _token_response(request, user, message="Email verified successfully", sessionId=session.session_id)


@router.post("/auth/resend-otp")
def resend_otp(request: Request, body: EmailRequest) -> JSONResponse:
    """Issue a fresh code, invalidating any code still pending."""
    state = request.app.state
    user = state.credentials.find_by_email(body.email)
    if user is None:
        raise NotFound("User not found")
    if user.is_verified:
        raise BadRequest("Email already verified")
    code = state.otp.issue(user)
    state.mailer.send_otp(user.email, code, user.name, PURPOSE_REGISTRATION)
    return JSONResponse(content=envelope(message="OTP sent successfully. Please check your email."))


# ---------------------------------------------------------------------------
# Login and token lifecycle
# ---------------------------------------------------------------------------


@router.post("/auth/login")
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return a token and record a session.

    Unknown email and wrong password produce the same 401 so the response
    does not reveal which accounts exist. No session is recorded on failure.
    """
    state = request.app.state
    user = state.credentials.authenticate(body.email, body.password)
    if user is None:
        raise InvalidCredentials()
    if not user.is_active:
        raise AccountDeactivated()
    session = state.sessions.record(user)
    logger.info("Login user_id=%s", user.id)
    return _token_response(request, user, sessionId=session.session_id)


@router.get("/auth/me")
def me(current_user: User = Depends(get_current_user)) -> dict:
    return envelope({"user": current_user.public_dict()})


@router.post("/auth/refresh-token")
def refresh_token(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Reissue a token from the live user record (picks up role/verification changes)."""
    return _token_response(request, current_user)


@router.get("/auth/sessions")
def list_sessions(request: Request, current_user: User = Depends(get_current_user)) -> dict:
    sessions = request.app.state.sessions.list_for_user(current_user.id)
    return envelope({"count": len(sessions), "sessions": [s.public_dict() for s in sessions]})


@router.post("/auth/token")
def authenticate_with_token(request: Request, body: TokenRequest) -> JSONResponse:
    """Exchange a still-valid token for a fresh one.

    Expired / tampered tokens are rejected with 401 by the Token Issuer.
    """
    state = request.app.state
    claims = state.tokens.decode(body.token)
    user = state.credentials.find_by_id(claims["id"])
    if user is None:
        raise NotFound("User not found")
    if not user.is_active:
        raise AccountDeactivated()
    return _token_response(request, user)


@router.post("/auth/logout")
def logout() -> JSONResponse:
    """Clear the jwt cookie. The token itself stays valid until it expires."""
    resp = JSONResponse(content=envelope(message="Logged out."))
    clear_auth_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Service-to-service tokens
# ---------------------------------------------------------------------------


@router.post("/auth/service-token")
def create_service_token(
    request: Request,
    body: ServiceTokenRequest,
    current_user: User = Depends(authorize(ROLE_ADMIN)),
) -> JSONResponse:
    settings = request.app.state.settings
    expires_in = body.expires_in if body.expires_in is not None else settings.service_token_expire
    try:
        parse_duration(expires_in)
    except ValueError as exc:
        raise BadRequest(str(exc)) from None
    token = request.app.state.tokens.issue_service_token(body.service_name, body.permissions, expires_in)
    logger.info("Service token for %s issued by user_id=%s", body.service_name, current_user.id)
    resp = JSONResponse(
        content=envelope(
            {
                "token": token,
                "service": {"name": body.service_name, "permissions": body.permissions, "expiresIn": expires_in},
            }
        )
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.get("/auth/service-check")
def service_check(service: dict = Depends(require_service)) -> dict:
    """Let a service confirm its token and see the permissions it carries."""
    return envelope({"service": service})
