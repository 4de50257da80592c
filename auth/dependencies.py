"""
auth/dependencies.py -- Access Control Gate (FastAPI Depends() helpers).

Token sources, checked in priority order:
  1. Authorization: Bearer <token> header -- API clients.
  2. "jwt" cookie -- set by login / verify-email for browser clients.

check_request() runs the whole pipeline and returns a GateResult; it never
raises. The FastAPI dependencies raise GateResult.error, and the exception
handlers in api/main.py render it as the uniform error envelope:

  missing token            NoToken            401
  bad signature/malformed  InvalidSignature   401
  past exp                 Expired            401
  user deleted             UserNotFound       401
  user deactivated         AccountDeactivated 401
  role not allowed         Forbidden          403
  email not verified       Forbidden          403

The user is reloaded from the store on every request, so a role change or
deactivation takes effect immediately even though the token still carries
the old claims.

Layer rule: no imports from api/, web/ or shop/.
  auth/dependencies.py may import from fastapi (for Depends/Request) because
  this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, Request

from auth.models import User
from auth.tokens import AUTH_COOKIE
from core.errors import (
    AccountDeactivated,
    Forbidden,
    NoToken,
    StorefrontError,
    UserNotFound,
)


@dataclass
class GateResult:
    """Outcome of one pass through the gate. Exactly one of user / error is set."""

    user: Optional[User] = None
    claims: Optional[dict] = None
    error: Optional[StorefrontError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.user is not None


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        return token or None
    return None


def extract_token(request: Request) -> Optional[str]:
    """Bearer header first, then the jwt cookie."""
    return _bearer_token(request) or request.cookies.get(AUTH_COOKIE) or None


def check_request(request: Request) -> GateResult:
    """Authenticate the request. Returns a GateResult and never raises."""
    token = extract_token(request)
    if not token:
        return GateResult(error=NoToken())

    try:
        claims = request.app.state.tokens.decode(token)
    except StorefrontError as exc:
        return GateResult(error=exc)

    user = request.app.state.user_store.get_by_id(claims["id"])
    if user is None:
        return GateResult(claims=claims, error=UserNotFound())
    if not user.is_active:
        return GateResult(claims=claims, error=AccountDeactivated())
    return GateResult(user=user, claims=claims)


def try_get_current_user(request: Request) -> User | None:
    """Soft variant for pages that render differently when logged in."""
    result = check_request(request)
    return result.user if result.ok else None


def get_current_user(request: Request) -> User:
    """Require authentication. Raises the gate's 401 error otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    result = check_request(request)
    if result.error is not None:
        raise result.error
    request.state.user = result.user
    request.state.claims = result.claims
    return result.user


def authorize(*roles: str) -> Callable[..., User]:
    """Build a dependency that admits only the given roles (403 otherwise).

        @router.get("/users", dependencies=[Depends(authorize("admin"))])
    """

    def _dependency(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise Forbidden(f"User role {user.role} is not authorized to access this resource")
        return user

    return _dependency


def require_verified(user: User = Depends(get_current_user)) -> User:
    """Require a completed email verification (403 otherwise)."""
    if not user.is_verified:
        raise Forbidden("Email not verified. Please verify your email to access this resource")
    return user


def require_service(request: Request) -> dict:
    """Service-token gate. Bearer header only; cookies are never consulted.

    Returns {"name": ..., "permissions": [...]} and attaches it to
    request.state.service.
    """
    token = _bearer_token(request)
    if not token:
        raise NoToken()
    claims = request.app.state.tokens.decode_service_token(token)
    service = {"name": claims["service"], "permissions": list(claims.get("permissions") or [])}
    request.state.service = service
    return service
