"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in shop/models.py -- dataclasses own domain shape; stores and routes do the
work.

Layer rule: no imports from api/, web/ or shop/.
"""

from __future__ import annotations

from dataclasses import dataclass

ROLE_CUSTOMER = "customer"
ROLE_VENDOR = "vendor"
ROLE_ADMIN = "admin"
ROLES: tuple[str, ...] = (ROLE_CUSTOMER, ROLE_VENDOR, ROLE_ADMIN)


@dataclass
class User:
    """A registered account.

    email is stored verbatim and looked up case-sensitively.

    hashed_password, otp_hash and otp_expiry are only populated when the store
    is asked for them (include_secrets=True). The default projection leaves
    them None so they cannot leak into a response by accident.

    otp_hash / otp_expiry are both set while an email verification window is
    open and both cleared the moment verification succeeds.
    """

    name: str
    email: str
    role: str = ROLE_CUSTOMER  # "customer", "vendor", "admin"
    id: int | None = None
    hashed_password: str | None = None
    is_verified: bool = False
    is_active: bool = True
    otp_hash: str | None = None
    otp_expiry: str | None = None  # ISO 8601 UTC
    created_at: str | None = None
    updated_at: str | None = None

    def public_dict(self) -> dict:
        """The user shape returned by every API response."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "isVerified": self.is_verified,
        }


@dataclass
class Session:
    """An audit record of one successful login or email verification.

    Not an authorization credential -- the bearer token is. session_id is an
    independent random value kept so older clients can track their session.
    user_name is denormalized so listings need no join.
    """

    user_id: int
    user_name: str
    session_id: str
    created_at: str  # ISO 8601 UTC
    expires_at: str  # ISO 8601 UTC, created_at + retention
    id: int | None = None

    def public_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "userName": self.user_name,
            "sessionId": self.session_id,
            "createdAt": self.created_at,
            "expiresAt": self.expires_at,
        }
