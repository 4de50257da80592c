"""
auth/sessions.py -- Session Record Log.

One append-only record per successful login or email verification. The log
is informational: the bearer token is the credential, and nothing here is
consulted when authorizing a request. Multiple concurrent sessions per user
are allowed and there is no revocation list.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

from auth.models import Session, User
from auth.store import UserStore, to_iso
from core.config import Settings

logger = logging.getLogger("storefront.auth")


def generate_session_id() -> str:
    """64 hex characters (32 bytes) from the CSPRNG."""
    return secrets.token_hex(32)


class SessionLog:
    def __init__(self, store: UserStore, settings: Settings) -> None:
        self._store = store
        self._settings = settings

    def record(self, user: User) -> Session:
        """Append a session for `user` expiring after the retention window."""
        now = datetime.now(timezone.utc)
        session = Session(
            user_id=user.id,
            user_name=user.name,
            session_id=generate_session_id(),
            created_at=to_iso(now),
            expires_at=to_iso(now + timedelta(days=self._settings.session_retention_days)),
        )
        session.id = self._store.create_session(session)
        return session

    def list_for_user(self, user_id: int) -> list[Session]:
        """Unexpired sessions for `user_id`, newest first."""
        return self._store.list_sessions(user_id)

    def purge_expired(self) -> int:
        removed = self._store.purge_expired_sessions()
        if removed:
            logger.info("Purged %d expired session record(s)", removed)
        return removed
