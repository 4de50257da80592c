"""
auth/credentials.py -- Credential Store: account creation and password checks.

Wraps UserStore with the password rules so route handlers never see a hash
or an IntegrityError:

  check_email_address()  syntax check; the address is returned verbatim
  create_user()          bad email -> BadRequest, duplicate email -> DuplicateResource
  authenticate()         constant-effort login [C1]
  update_password()      re-hash and replace (issued tokens stay valid)

Layer rule: no imports from api/, web/ or shop/.
"""

from __future__ import annotations

import logging
from typing import Optional

from email_validator import validate_email
from sqlalchemy.exc import IntegrityError

from auth.models import ROLE_CUSTOMER, User
from auth.store import UserStore
from auth.tokens import _DUMMY_HASH, hash_password
from auth.tokens import verify_password as _check_hash
from core.errors import BadRequest, DuplicateResource

logger = logging.getLogger("storefront.auth")

EMAIL_MAX_LENGTH = 255


def check_email_address(email: str) -> str:
    """Validate email syntax and return `email` unchanged.

    Addresses are stored and matched verbatim, so the normalized form that
    email-validator computes (lowercased domain, IDNA) is discarded. Every
    entry point (API models, web forms, create-admin) goes through here.

    Raises ValueError (email-validator's EmailNotValidError is one) on a bad
    address.
    """
    if len(email) > EMAIL_MAX_LENGTH:
        raise ValueError(f"Email must be at most {EMAIL_MAX_LENGTH} characters")
    validate_email(email, check_deliverability=False)
    return email


class CredentialStore:
    def __init__(self, store: UserStore) -> None:
        self._store = store

    def create_user(
        self,
        name: str,
        email: str,
        password: str,
        role: str = ROLE_CUSTOMER,
        is_verified: bool = False,
    ) -> User:
        """Create an account and return it (without secrets).

        Raises DuplicateResource if the email is already registered. The
        UNIQUE constraint is the authority; the pre-check only gives the
        common case a clean message without a failed INSERT. Raises
        BadRequest for an address check_email_address() rejects.
        """
        try:
            check_email_address(email)
        except ValueError:
            raise BadRequest("Please provide a valid email") from None
        if self._store.get_by_email(email) is not None:
            raise DuplicateResource("User already exists")
        user = User(
            name=name,
            email=email,
            role=role,
            hashed_password=hash_password(password),
            is_verified=is_verified,
        )
        try:
            user_id = self._store.create_user(user)
        except IntegrityError:
            raise DuplicateResource("User already exists") from None
        logger.info("User created user_id=%s role=%s", user_id, role)
        return self._store.get_by_id(user_id)

    def find_by_email(self, email: str, include_secrets: bool = False) -> Optional[User]:
        return self._store.get_by_email(email, include_secrets=include_secrets)

    def find_by_id(self, user_id: int, include_secrets: bool = False) -> Optional[User]:
        return self._store.get_by_id(user_id, include_secrets=include_secrets)

    def update_password(self, user_id: int, new_plaintext: str) -> bool:
        """Replace the stored hash. Does not revoke previously issued tokens."""
        updated = self._store.update_user(user_id, hashed_password=hash_password(new_plaintext))
        if updated:
            logger.info("Password changed user_id=%s", user_id)
        return updated

    @staticmethod
    def verify_password(user: User, candidate: str) -> bool:
        """Compare `candidate` against the user's hash. Never raises on mismatch.

        `user` must be loaded with include_secrets=True; a record without a
        hash is compared against the dummy hash and always fails.
        """
        if not user.hashed_password:
            _check_hash(candidate, _DUMMY_HASH)
            return False
        return _check_hash(candidate, user.hashed_password)

    def authenticate(self, email: str, password: str) -> Optional[User]:
        """Return the user for a correct email/password pair, else None.

        Always runs bcrypt whether or not the email exists [C1]:
        - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as a real check)
        - Wrong password: bcrypt runs against the real hash (same cost)

        Inactive accounts are returned; the caller decides how to report them.
        """
        user = self._store.get_by_email(email, include_secrets=True)
        if user is None:
            # Equalize timing -- do NOT return early before running bcrypt [C1]
            _check_hash(password, _DUMMY_HASH)
            return None
        if not self.verify_password(user, password):
            return None
        return user
