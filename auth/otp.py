"""
auth/otp.py -- One-time password issue and verification.

States per user:
  NoActiveOTP  --issue()-->  OTPPending  --verify() ok + mark_verified()-->  NoActiveOTP

A failed or expired verify leaves the state untouched; the next issue()
overwrites it. Only one code is pending per user at a time (last write wins),
so an in-flight verify against a superseded code fails on the hash compare.

Security:
  Codes come from the `secrets` CSPRNG and are stored only as a bcrypt hash.
  The plaintext is returned to the caller for email delivery and never
  persisted or logged.

  verify() is fail-closed: it returns False rather than raising, and it does
  not mutate the user. The caller decides what a correct code means for the
  account (route handlers call UserStore.mark_verified()).

Layer rule: no imports from api/, web/ or shop/.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt

from auth.store import to_iso
from core.config import Settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("storefront.auth")


# ---------------------------------------------------------------------------
# Pure helpers (no storage, testable in isolation)
# ---------------------------------------------------------------------------


def generate_otp_code(length: int = 6, alphabet: str = "0123456789") -> str:
    """Return a random code of `length` characters drawn from `alphabet`."""
    if length < 1:
        raise ValueError("OTP length must be at least 1.")
    if len(set(alphabet)) < 2:
        raise ValueError("OTP alphabet must contain at least two distinct characters.")
    return "".join(secrets.choice(alphabet) for _ in range(length))


def compute_otp_hash(code: str) -> str:
    """One-way salted hash of a code (bcrypt)."""
    return bcrypt.hashpw(str(code).strip().encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def compare_otp_hash(candidate, otp_hash: str) -> bool:
    """True if `candidate` (string-coerced and trimmed) matches `otp_hash`."""
    code = str(candidate).strip()
    if not code:
        return False
    try:
        return bcrypt.checkpw(code.encode("utf-8"), otp_hash.encode("utf-8"))
    except ValueError:
        return False


def _parse_expiry(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Issuer / Verifier
# ---------------------------------------------------------------------------


class OtpIssuer:
    """Issues codes into the Credential Store and checks candidates against them."""

    def __init__(self, store: UserStore, settings: Settings) -> None:
        self._store = store
        self._settings = settings

    def issue(self, user: User) -> str:
        """Generate a code, persist its hash and absolute expiry, return the plaintext.

        Overwrites any code already pending for this user.
        """
        code = generate_otp_code(self._settings.otp_length, self._settings.otp_alphabet)
        expiry = datetime.now(timezone.utc) + timedelta(seconds=self._settings.otp_ttl_seconds)
        otp_hash = compute_otp_hash(code)
        self._store.set_otp(user.id, otp_hash, to_iso(expiry))
        # Keep the in-memory record consistent with what was written.
        user.otp_hash = otp_hash
        user.otp_expiry = to_iso(expiry)
        logger.info("OTP issued user_id=%s ttl=%ss", user.id, self._settings.otp_ttl_seconds)
        return code

    def verify(self, user: User, candidate) -> bool:
        """Return True if `candidate` matches the pending code and has not expired.

        `user` must be loaded with include_secrets=True. Returns False when no
        code is pending, when the expiry has passed, or on mismatch. Never
        raises and never mutates the user.
        """
        if candidate is None or not user.otp_hash or not user.otp_expiry:
            return False
        expiry = _parse_expiry(user.otp_expiry)
        if expiry is None or datetime.now(timezone.utc) > expiry:
            return False
        return compare_otp_hash(candidate, user.otp_hash)
