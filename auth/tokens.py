"""
auth/tokens.py -- Password hashing and the Token Issuer (bearer + service JWTs).

Security design decisions:
  JWT: python-jose with HS256. User tokens carry id, name, email, role,
       isVerified plus sub/iat/exp. decode() raises typed errors -- Expired for
       a token past its exp, InvalidSignature for everything else -- and the
       access control gate turns those into 401 envelopes.

  Service tokens: {service, permissions}. Signed with SERVICE_SECRET_KEY when
       configured, otherwise SECRET_KEY. A valid JWT without the service claim
       (for example a user token) is rejected with NotAServiceToken.

  Passwords: bcrypt used directly. The _DUMMY_HASH constant enables timing
       equalization in CredentialStore.authenticate() so response time does not
       reveal whether an email exists [C1].

  No revocation list. A token stays valid until exp even after a password
       change; deactivation is caught by the gate's live user lookup.

Layer rule: no imports from api/, web/ or shop/. Import from core/ is allowed
-- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Iterable, Optional, Union

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from core.config import Settings
from core.errors import Expired, InvalidSignature, NotAServiceToken

if TYPE_CHECKING:
    from auth.models import User

logger = logging.getLogger("storefront.auth")

_ALGORITHM = "HS256"

# Name of the httpOnly cookie carrying the bearer token for browser clients.
AUTH_COOKIE = "jwt"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def _password_bytes(plain: str) -> bytes:
    # bcrypt only reads the first 72 bytes; recent releases raise on longer input.
    return plain.encode("utf-8")[:72]


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext.

    The API caps passwords at 72 characters, but multi-byte characters can
    still exceed bcrypt's 72-byte window; the tail beyond it is ignored.
    """
    return bcrypt.hashpw(_password_bytes(plain), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext matches the bcrypt hash. Never raises on mismatch."""
    try:
        return bcrypt.checkpw(_password_bytes(plain), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash ("Invalid salt") -- treat as a mismatch.
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("storefront_timing_dummy")


# ---------------------------------------------------------------------------
# Durations
# ---------------------------------------------------------------------------

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: Union[int, str]) -> int:
    """Convert 3600, "3600", "30s", "15m", "1h" or "7d" into seconds.

    Raises ValueError for anything else, including zero or negative values.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, int):
        seconds = value
    else:
        match = _DURATION_RE.match(str(value))
        if not match:
            raise ValueError(f"Invalid duration: {value!r}")
        seconds = int(match.group(1)) * _UNIT_SECONDS[match.group(2)]
    if seconds <= 0:
        raise ValueError(f"Duration must be positive: {value!r}")
    return seconds


# ---------------------------------------------------------------------------
# Token Issuer
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Mints and verifies user bearer tokens and service tokens.

    Holds a reference to Settings; the signing keys are never copied into
    module globals, so tests can build an issuer with any key.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    @property
    def default_ttl(self) -> int:
        return self._settings.token_expire_seconds

    # ------------------------------------------------------------------
    # User tokens
    # ------------------------------------------------------------------

    def issue(self, user: User, ttl_seconds: Optional[int] = None) -> str:
        """Encode a signed JWT with the user's identity claims.

        Args:
            user:        The authenticated user; id must be set.
            ttl_seconds: Lifetime override. None uses token_expire_seconds.
        """
        now = datetime.now(timezone.utc)
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        payload = {
            "id": user.id,
            "name": user.name,
            "email": user.email,
            "role": user.role,
            "isVerified": user.is_verified,
            "sub": str(user.id),
            "iat": now,
            "exp": now + timedelta(seconds=ttl),
        }
        return jwt.encode(payload, self._settings.secret_key, algorithm=_ALGORITHM)

    def decode(self, token: str) -> dict:
        """Verify a user token and return its claims.

        Raises:
            Expired:          the signature is valid but exp has passed.
            InvalidSignature: any other failure -- bad signature, malformed
                              token, or a payload without an id claim.
        """
        try:
            payload = jwt.decode(token, self._settings.secret_key, algorithms=[_ALGORITHM])
        except ExpiredSignatureError:
            raise Expired() from None
        except JWTError:
            raise InvalidSignature() from None
        if payload.get("id") is None:
            raise InvalidSignature()
        return payload

    # ------------------------------------------------------------------
    # Service tokens
    # ------------------------------------------------------------------

    def issue_service_token(
        self,
        service_name: str,
        permissions: Iterable[str] = (),
        expires_in: Union[int, str, None] = None,
    ) -> str:
        """Encode a service-to-service token.

        expires_in accepts seconds or a duration string ("15m", "1h", "7d").
        None uses service_token_expire. Raises ValueError for a bad duration.
        """
        ttl = parse_duration(expires_in if expires_in is not None else self._settings.service_token_expire)
        now = datetime.now(timezone.utc)
        payload = {
            "service": service_name,
            "permissions": list(permissions),
            "iat": now,
            "exp": now + timedelta(seconds=ttl),
        }
        logger.info("Service token issued service=%s ttl=%ss", service_name, ttl)
        return jwt.encode(payload, self._settings.effective_service_secret, algorithm=_ALGORITHM)

    def decode_service_token(self, token: str) -> dict:
        """Verify a service token and return its claims.

        Raises Expired / InvalidSignature like decode(), and NotAServiceToken
        when the token verifies but carries no service claim.
        """
        try:
            payload = jwt.decode(token, self._settings.effective_service_secret, algorithms=[_ALGORITHM])
        except ExpiredSignatureError:
            raise Expired() from None
        except JWTError:
            raise InvalidSignature() from None
        if not payload.get("service"):
            raise NotAServiceToken()
        return payload


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, settings: Settings, max_age: Optional[int] = None) -> None:
    """Write the bearer token as the httpOnly "jwt" cookie.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation for most cases.
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    max_age: matches the token lifetime so both expire together.
    """
    response.set_cookie(
        AUTH_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=max_age if max_age is not None else settings.token_expire_seconds,
    )


def clear_auth_cookie(response) -> None:
    response.delete_cookie(AUTH_COOKIE, httponly=True, samesite="lax")
