"""
core/errors.py -- Typed error taxonomy shared by every layer.

Each exception carries the HTTP status and a stable machine-readable code.
Stores, auth components and route handlers raise these; api/main.py owns the
single set of exception handlers that turns them into the error envelope:

    {"status": "fail", "code": "invalid_otp", "message": "Invalid or expired OTP"}

"fail" is used for 4xx responses, "error" for 5xx.

Layer rule: core/ is the kernel. No imports from api/, web/, auth/ or shop/.
"""

from __future__ import annotations


class StorefrontError(Exception):
    """Base class for every error that maps to an HTTP response."""

    status_code: int = 400
    code: str = "bad_request"
    default_message: str = "Bad request."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def envelope_status(self) -> str:
        return "error" if self.status_code >= 500 else "fail"

    def to_dict(self) -> dict:
        return {"status": self.envelope_status, "code": self.code, "message": self.message}


class BadRequest(StorefrontError):
    status_code = 400
    code = "bad_request"
    default_message = "Bad request."


class DuplicateResource(StorefrontError):
    status_code = 400
    code = "duplicate"
    default_message = "Resource already exists."


class NotFound(StorefrontError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found."


class InvalidOrExpiredOTP(StorefrontError):
    status_code = 400
    code = "invalid_otp"
    default_message = "Invalid or expired OTP"


# ---------------------------------------------------------------------------
# Authentication (401)
# ---------------------------------------------------------------------------


class AuthenticationError(StorefrontError):
    status_code = 401
    code = "unauthorized"
    default_message = "Authentication failed."


class InvalidCredentials(AuthenticationError):
    code = "invalid_credentials"
    default_message = "Invalid credentials"


class NoToken(AuthenticationError):
    code = "no_token"
    default_message = "Authentication failed: No token provided"


class InvalidSignature(AuthenticationError):
    code = "invalid_token"
    default_message = "Authentication failed: Invalid token"


class Expired(AuthenticationError):
    code = "token_expired"
    default_message = "Authentication failed: Token expired"


class UserNotFound(AuthenticationError):
    code = "user_not_found"
    default_message = "Authentication failed: User not found"


class AccountDeactivated(AuthenticationError):
    code = "account_deactivated"
    default_message = "Authentication failed: User account is deactivated"


# ---------------------------------------------------------------------------
# Authorization (403)
# ---------------------------------------------------------------------------


class Forbidden(StorefrontError):
    status_code = 403
    code = "forbidden"
    default_message = "You are not allowed to access this resource."


class NotAServiceToken(StorefrontError):
    status_code = 403
    code = "not_a_service_token"
    default_message = "Service authentication failed: Not a service token"


# ---------------------------------------------------------------------------
# Upstream
# ---------------------------------------------------------------------------


class UpstreamDeliveryFailure(StorefrontError):
    status_code = 502
    code = "delivery_failed"
    default_message = "Email delivery failed. Please try again later."
