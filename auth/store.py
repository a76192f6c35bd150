"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore and SessionStore are the repositories; _row_to_user / _row_to_session
are the mappers. Service and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Sessions:
  A refresh token string is UNIQUE. Sessions are never cached in process:
  every find / is_valid call is a fresh read so a revoke is visible to the
  very next request.

Timestamps:
  Stored as naive UTC in DateTime columns (SQLite has no tz-aware type) and
  returned as tz-aware UTC datetimes.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import dataclasses
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import Role, Session, User
from core.errors import ConflictError, NotFoundError

_DEFAULT_DB_URL = "sqlite:///./authgate.db"

# Revoked sessions are kept this long for auditing before cleanup removes them.
_REVOKED_RETENTION = timedelta(days=30)

Clock = Callable[[], datetime]

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("hashed_password", Text, nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("role", String(10), nullable=False, default=Role.USER.value),
    Column("email_verified", Boolean, nullable=False, default=False),
    Column("last_login_at", DateTime),
    Column("password_changed_at", DateTime),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)

_sessions = Table(
    "user_sessions",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("refresh_token", Text, nullable=False, unique=True),
    Column("expires_at", DateTime, nullable=False),
    Column("revoked_at", DateTime),
    Column("created_at", DateTime, nullable=False),
)


# ---------------------------------------------------------------------------
# Connection pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. Foreign keys are off by default in SQLite,
    and the session -> user cascade depends on them.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Owns the engine; SessionStore shares it via the `engine` attribute.

    Usage:
        store = UserStore("sqlite:///./authgate.db")
        user = store.create_user(User(email=..., username=..., ...))
        store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, clock: Clock = _utcnow) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        self._clock = clock
        _metadata.create_all(self.engine)

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> User:
        """Insert a new user and return it with id and timestamps filled in.

        Raises ConflictError when the email or username UNIQUE constraint
        fires. The service layer checks both up front, but two concurrent
        registrations can pass those checks together; the constraint is the
        final word.
        """
        now = self._clock()
        user_id = user.id or _new_id()
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _users.insert().values(
                        id=user_id,
                        email=user.email,
                        username=user.username,
                        first_name=user.first_name,
                        last_name=user.last_name,
                        hashed_password=user.hashed_password,
                        is_active=user.is_active,
                        role=Role(user.role).value,
                        email_verified=user.email_verified,
                        created_at=_to_db(now),
                        updated_at=_to_db(now),
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError("User with this email or username already exists") from exc
        stamped = _from_db(_to_db(now))
        return dataclasses.replace(
            user,
            id=user_id,
            role=Role(user.role),
            created_at=stamped,
            updated_at=stamped,
        )

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user and stamp updated_at.

        Accepted fields: any users column except id and created_at. Datetime
        values are normalised to naive UTC; Role values to their string.

        Returns True if a row was updated, False if user_id was not found.
        """
        values = {}
        for key, value in fields.items():
            if isinstance(value, datetime):
                value = _to_db(value)
            elif isinstance(value, Role):
                value = value.value
            values[key] = value
        values["updated_at"] = _to_db(self._clock())
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: str) -> None:
        """Stamp the current UTC time as last_login_at."""
        self.update_user(user_id, last_login_at=self._clock())

    def update_password(self, user_id: str, hashed_password: str) -> bool:
        """Replace the password hash and stamp password_changed_at."""
        return self.update_user(user_id, hashed_password=hashed_password, password_changed_at=self._clock())

    def close(self) -> None:
        self.engine.dispose()


class SessionStore:
    """Repository for refresh-token sessions.

    Usage:
        sessions = SessionStore(user_store.engine)
        sessions.create_session(user.id, token, expires_at)
        sessions.is_valid(token)
        sessions.revoke(token)
    """

    def __init__(self, engine: Engine, clock: Clock = _utcnow) -> None:
        self.engine = engine
        self._clock = clock

    def create_session(self, user_id: str, refresh_token: str, expires_at: datetime) -> Session:
        now = self._clock()
        session = Session(
            id=_new_id(),
            user_id=user_id,
            refresh_token=refresh_token,
            expires_at=expires_at,
            created_at=now,
        )
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=user_id,
                    refresh_token=refresh_token,
                    expires_at=_to_db(expires_at),
                    created_at=_to_db(now),
                )
            )
            conn.commit()
        return session

    def find_by_token(self, refresh_token: str) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.refresh_token == refresh_token)).fetchone()
        return _row_to_session(row) if row is not None else None

    def find_by_token_with_user(self, refresh_token: str) -> Session | None:
        """Return the session with its owning user attached, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.refresh_token == refresh_token)).fetchone()
            if row is None:
                return None
            user_row = conn.execute(_users.select().where(_users.c.id == row.user_id)).fetchone()
        session = _row_to_session(row)
        session.user = _row_to_user(user_row) if user_row is not None else None
        return session

    def find_active_for_user(self, user_id: str) -> list[Session]:
        """Return the user's active sessions, newest first."""
        now = _to_db(self._clock())
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select()
                .where(
                    (_sessions.c.user_id == user_id)
                    & (_sessions.c.revoked_at.is_(None))
                    & (_sessions.c.expires_at > now)
                )
                .order_by(_sessions.c.created_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def revoke(self, refresh_token: str) -> None:
        """Mark a session revoked. Raises NotFoundError if no session has this token.

        Revoking an already-revoked session keeps the original revoked_at.
        """
        now = _to_db(self._clock())
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where(_sessions.c.refresh_token == refresh_token)
                .values(revoked_at=func.coalesce(_sessions.c.revoked_at, now))
            )
            conn.commit()
        if result.rowcount == 0:
            raise NotFoundError("Session not found")

    def revoke_all_for_user(self, user_id: str) -> int:
        """Revoke every still-unrevoked session of a user. Returns the count."""
        now = _to_db(self._clock())
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.user_id == user_id) & (_sessions.c.revoked_at.is_(None)))
                .values(revoked_at=now)
            )
            conn.commit()
        return result.rowcount

    def is_valid(self, refresh_token: str) -> bool:
        session = self.find_by_token(refresh_token)
        return session is not None and session.is_active(self._clock())

    def cleanup_expired(self) -> int:
        """Delete expired sessions and sessions revoked more than 30 days ago.

        Returns the number of rows deleted.
        """
        now = self._clock()
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.delete().where(
                    (_sessions.c.expires_at < _to_db(now))
                    | (
                        _sessions.c.revoked_at.is_not(None)
                        & (_sessions.c.revoked_at < _to_db(now - _REVOKED_RETENTION))
                    )
                )
            )
            conn.commit()
        return result.rowcount

    def stats_for_user(self, user_id: str) -> dict[str, int]:
        """Return {active, total, expired, revoked} session counts for a user.

        expired counts every session past its expiry; revoked counts the
        remaining unexpired sessions that were revoked.
        """
        now = _to_db(self._clock())
        base = select(func.count()).select_from(_sessions).where(_sessions.c.user_id == user_id)
        with self.engine.connect() as conn:
            total = conn.execute(base).scalar() or 0
            active = (
                conn.execute(
                    base.where(_sessions.c.revoked_at.is_(None)).where(_sessions.c.expires_at > now)
                ).scalar()
                or 0
            )
            expired = conn.execute(base.where(_sessions.c.expires_at < now)).scalar() or 0
        return {
            "active": active,
            "total": total,
            "expired": expired,
            "revoked": total - active - expired,
        }


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        username=row.username,
        first_name=row.first_name,
        last_name=row.last_name,
        hashed_password=row.hashed_password,
        is_active=bool(row.is_active),
        role=Role(row.role),
        email_verified=bool(row.email_verified),
        last_login_at=_from_db(row.last_login_at),
        password_changed_at=_from_db(row.password_changed_at),
        created_at=_from_db(row.created_at),
        updated_at=_from_db(row.updated_at),
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        refresh_token=row.refresh_token,
        expires_at=_from_db(row.expires_at),
        revoked_at=_from_db(row.revoked_at),
        created_at=_from_db(row.created_at),
    )
