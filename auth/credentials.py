"""
auth/credentials.py -- Email / password verification with timing equalization.

validate_credentials() always runs bcrypt, whether or not the email exists:
  - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as a real check)
  - Known email: bcrypt runs against the stored hash
An attacker cannot enumerate registered emails by measuring response time.

Store errors propagate; only "no such user", "inactive" and "wrong password"
collapse to None.
"""

from __future__ import annotations

from auth.models import User
from auth.store import UserStore
from auth.tokens import _DUMMY_HASH, verify_password


class CredentialVerifier:
    def __init__(self, user_store: UserStore) -> None:
        self._users = user_store

    def validate_credentials(self, email: str, password: str) -> User | None:
        """Return the matching active user with the password stripped, or None."""
        user = self._users.get_by_email(email)
        if user is None or not user.hashed_password:
            verify_password(password, _DUMMY_HASH)
            return None
        if not verify_password(password, user.hashed_password):
            return None
        if not user.is_active:
            return None
        return user.sanitized()
