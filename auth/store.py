"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper (same as shop/store.py).
UserStore is the repository; _row_to_user / _row_to_session are the mappers.
Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Secret columns (hashed_password, otp_hash, otp_expiry) are excluded from the
  default projection. Every getter takes include_secrets=False; only the code
  paths that actually compare a password or an OTP ask for them.

  UNIQUE(email) is enforced by the database. create_user() lets the
  IntegrityError propagate; auth/credentials.py turns it into
  DuplicateResource so a concurrent double-registration still fails cleanly.

Sessions:
  The sessions table is an append-only audit log. Expired rows are filtered
  out of listings and removed by purge_expired_sessions(), which the app
  lifespan calls on a timer -- the relational equivalent of a TTL index.

Layer rule: no imports from api/, web/ or shop/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine

from auth.models import Session, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default="customer"),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("otp_hash", Text),  # NULL unless a verification window is open
    Column("otp_expiry", String(32)),  # ISO 8601 UTC
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("user_name", String(50), nullable=False),
    Column("session_id", String(64), nullable=False, unique=True),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False, index=True),
)

# Columns returned by the default (non-secret) projection.
_PUBLIC_USER_COLUMNS = [
    _users.c.id,
    _users.c.name,
    _users.c.email,
    _users.c.role,
    _users.c.is_verified,
    _users.c.is_active,
    _users.c.created_at,
    _users.c.updated_at,
]

# Fields update_user() accepts. Anything else is a programming error.
_UPDATABLE_FIELDS = {"name", "email", "role", "is_active", "is_verified", "hashed_password"}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(dt: datetime) -> str:
    """Fixed-width ISO 8601 so stored timestamps also sort correctly as text."""
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and Session entities.

    Usage:
        store = UserStore("sqlite:///storefront.db")
        uid = store.create_user(User(name="A", email="a@x.com", hashed_password=hash_password("secret1")))
        user = store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    name=user.name,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    role=user.role,
                    is_verified=1 if user.is_verified else 0,
                    is_active=1 if user.is_active else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str, include_secrets: bool = False) -> User | None:
        """Look up a user by exact email (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_select_users(include_secrets).where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int, include_secrets: bool = False) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_select_users(include_secrets).where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by id. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_select_users(False).order_by(_users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: name, email, role, is_active, is_verified,
        hashed_password. Booleans are stored as 0/1.

        Returns True if a row was updated, False if user_id was not found.
        Raises IntegrityError if a changed email collides with another user.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        for flag in ("is_active", "is_verified"):
            if flag in fields:
                fields[flag] = 1 if fields[flag] else 0
        fields["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def set_otp(self, user_id: int, otp_hash: str, otp_expiry: str) -> bool:
        """Store a fresh OTP hash and expiry, overwriting any pending one."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(otp_hash=otp_hash, otp_expiry=otp_expiry, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def mark_verified(self, user_id: int) -> bool:
        """Flip is_verified on and clear OTP material in a single UPDATE.

        One statement keeps the invariant: a verified user never has a
        lingering otp_hash / otp_expiry.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(is_verified=1, otp_hash=None, otp_expiry=None, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user and their session records.

        Returns True if deleted, False if not found. Callers enforce the
        self-delete rule (admin-only route).
        """
        with self.engine.begin() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Session record log
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> int:
        """Append a session record and return its ID.

        Raises IntegrityError on a session_id collision (64 hex chars of
        CSPRNG output -- never expected in practice).
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.insert().values(
                    user_id=session.user_id,
                    user_name=session.user_name,
                    session_id=session.session_id,
                    created_at=session.created_at,
                    expires_at=session.expires_at,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def list_sessions(self, user_id: int, now_iso: str | None = None) -> list[Session]:
        """Return unexpired sessions for a user, newest first."""
        now_iso = now_iso or _now_iso()
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select()
                .where((_sessions.c.user_id == user_id) & (_sessions.c.expires_at > now_iso))
                .order_by(_sessions.c.created_at.desc(), _sessions.c.id.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def count_sessions(self, user_id: int) -> int:
        """Count every session row for a user, expired or not."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_sessions).where(_sessions.c.user_id == user_id)
            ).scalar()
        return result or 0

    def purge_expired_sessions(self, now_iso: str | None = None) -> int:
        """Delete every session whose expires_at has passed. Returns rows removed."""
        now_iso = now_iso or _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= now_iso))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Query builders and row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _select_users(include_secrets: bool):
    if include_secrets:
        return _users.select()
    return select(*_PUBLIC_USER_COLUMNS)


def _row_to_user(row) -> User:
    # Secret columns are absent from the default projection.
    mapping = row._mapping
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        role=row.role,
        is_verified=bool(row.is_verified),
        is_active=bool(row.is_active),
        hashed_password=mapping.get("hashed_password"),
        otp_hash=mapping.get("otp_hash"),
        otp_expiry=mapping.get("otp_expiry"),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        user_name=row.user_name,
        session_id=row.session_id,
        created_at=row.created_at,
        expires_at=row.expires_at,
    )
