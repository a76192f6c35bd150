"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond trivial
predicates). Stores and services do the work.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    ADMIN = "ADMIN"
    USER = "USER"


@dataclass
class User:
    """A registered account.

    hashed_password is None on copies handed out beyond the service layer
    (see sanitized()); only the credential verifier and change_password
    ever read it.
    """

    email: str
    username: str
    first_name: str
    last_name: str
    id: str | None = None
    hashed_password: str | None = None
    role: Role = Role.USER
    is_active: bool = True
    email_verified: bool = False
    last_login_at: datetime | None = None
    password_changed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def sanitized(self) -> User:
        """Return a copy with the password hash stripped."""
        return dataclasses.replace(self, hashed_password=None)


@dataclass
class Session:
    """A refresh-token session.

    Active iff revoked_at is None and expires_at is in the future. Both
    REVOKED and EXPIRED are terminal.
    """

    user_id: str
    refresh_token: str
    expires_at: datetime
    id: str | None = None
    revoked_at: datetime | None = None
    created_at: datetime | None = None
    user: User | None = None

    def is_active(self, now: datetime) -> bool:
        return self.revoked_at is None and self.expires_at > now


@dataclass(frozen=True)
class TokenPayload:
    """Authenticated principal decoded from an access token."""

    sub: str
    email: str
    username: str
    role: Role


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
