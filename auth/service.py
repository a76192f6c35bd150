"""
auth/service.py -- Authentication orchestration: register, login, refresh,
logout, password change.

Every store call and every bcrypt call is blocking, so each one runs in a
worker thread via asyncio.to_thread. The event loop never blocks on SQLite
or on the bcrypt work factor.

Refresh protocol (one-time-use rotation):
  1. Verify the refresh JWT signature and expiry with the refresh secret.
  2. Look up the session by token with its user. Missing session or inactive
     user -> 401 "Invalid refresh token".
  3. Re-check session validity (not revoked, not expired) -> 401
     "Refresh token expired or revoked".
  4. Issue a new pair, revoke the old session, persist the new one.
A refresh token therefore works exactly once. Step 4's revoke and insert are
not a single transaction: a crash between them leaves the user with no valid
session (fail closed) and they must log in again.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from auth.credentials import CredentialVerifier
from auth.models import Role, TokenPair, User
from auth.store import SessionStore, UserStore
from auth.tokens import TokenIssuer, hash_password, verify_password
from core.errors import ConflictError, NotFoundError, UnauthorizedError

logger = logging.getLogger("authgate.auth")


@dataclass(frozen=True)
class AuthResult:
    tokens: TokenPair
    user: User


class AuthService:
    """Coordinates UserStore, SessionStore, TokenIssuer and CredentialVerifier."""

    def __init__(
        self,
        users: UserStore,
        sessions: SessionStore,
        issuer: TokenIssuer,
        bcrypt_rounds: int = 12,
    ) -> None:
        self._users = users
        self._sessions = sessions
        self._issuer = issuer
        self._credentials = CredentialVerifier(users)
        self._bcrypt_rounds = bcrypt_rounds

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def register(
        self,
        email: str,
        username: str,
        first_name: str,
        last_name: str,
        password: str,
    ) -> AuthResult:
        """Create an account, open its first session and return tokens + user.

        Email is checked before username, so a request clashing on both
        reports the email conflict.
        """
        if await asyncio.to_thread(self._users.get_by_email, email) is not None:
            raise ConflictError("User with this email already exists")
        if await asyncio.to_thread(self._users.get_by_username, username) is not None:
            raise ConflictError("Username is already taken")

        hashed = await asyncio.to_thread(hash_password, password, self._bcrypt_rounds)
        user = await asyncio.to_thread(
            self._users.create_user,
            User(
                email=email,
                username=username,
                first_name=first_name,
                last_name=last_name,
                hashed_password=hashed,
                role=Role.USER,
            ),
        )
        tokens = await self._open_session(user)
        logger.info("Registered user %s", user.id)
        return AuthResult(tokens=tokens, user=user.sanitized())

    async def login(self, email: str, password: str) -> AuthResult:
        user = await asyncio.to_thread(self._credentials.validate_credentials, email, password)
        if user is None:
            raise UnauthorizedError("Invalid credentials")
        tokens = await self._open_session(user)
        logger.info("User %s logged in", user.id)
        return AuthResult(tokens=tokens, user=user)

    async def refresh_token(self, refresh_token: str) -> TokenPair:
        """Rotate a refresh token. The presented token is revoked on success."""
        self._issuer.verify_refresh_token(refresh_token)

        session = await asyncio.to_thread(self._sessions.find_by_token_with_user, refresh_token)
        if session is None or session.user is None or not session.user.is_active:
            raise UnauthorizedError("Invalid refresh token")
        if not await asyncio.to_thread(self._sessions.is_valid, refresh_token):
            raise UnauthorizedError("Refresh token expired or revoked")

        tokens = await self._issuer.generate_tokens(session.user)
        await asyncio.to_thread(self._sessions.revoke, refresh_token)
        await asyncio.to_thread(
            self._sessions.create_session,
            session.user.id,
            tokens.refresh_token,
            self._issuer.refresh_expiry(),
        )
        return tokens

    async def logout(self, refresh_token: str) -> None:
        """Revoke one session. Never fails: an unknown token is already logged out."""
        try:
            await asyncio.to_thread(self._sessions.revoke, refresh_token)
        except Exception as exc:  # noqa: BLE001 -- logout must always succeed
            logger.debug("Logout revoke ignored: %s", exc)

    async def logout_all_devices(self, user_id: str) -> int:
        count = await asyncio.to_thread(self._sessions.revoke_all_for_user, user_id)
        logger.info("Revoked %d sessions for user %s", count, user_id)
        return count

    async def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        """Replace the password and revoke every session of the user."""
        user = await asyncio.to_thread(self._users.get_by_id, user_id)
        if user is None:
            raise NotFoundError("User not found")
        if not await asyncio.to_thread(verify_password, current_password, user.hashed_password or ""):
            raise UnauthorizedError("Current password is incorrect")

        hashed = await asyncio.to_thread(hash_password, new_password, self._bcrypt_rounds)
        await asyncio.to_thread(self._users.update_password, user_id, hashed)
        await asyncio.to_thread(self._sessions.revoke_all_for_user, user_id)
        logger.info("Password changed for user %s; all sessions revoked", user_id)

    async def get_profile(self, user_id: str) -> User:
        user = await asyncio.to_thread(self._users.get_by_id, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user.sanitized()

    async def session_stats(self, user_id: str) -> dict[str, int]:
        return await asyncio.to_thread(self._sessions.stats_for_user, user_id)

    async def cleanup_sessions(self) -> int:
        return await asyncio.to_thread(self._sessions.cleanup_expired)

    async def bootstrap_admin(self, email: str, username: str, password: str) -> User | None:
        """Create the first ADMIN account when no user exists yet.

        Returns the created user, or None when users already exist.
        """
        if await asyncio.to_thread(self._users.has_users):
            return None
        hashed = await asyncio.to_thread(hash_password, password, self._bcrypt_rounds)
        user = await asyncio.to_thread(
            self._users.create_user,
            User(
                email=email,
                username=username,
                first_name="System",
                last_name="Administrator",
                hashed_password=hashed,
                role=Role.ADMIN,
            ),
        )
        logger.info("Created initial admin account %s", user.username)
        return user.sanitized()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _open_session(self, user: User) -> TokenPair:
        tokens = await self._issuer.generate_tokens(user)
        await asyncio.to_thread(
            self._sessions.create_session,
            user.id,
            tokens.refresh_token,
            self._issuer.refresh_expiry(),
        )
        await asyncio.to_thread(self._users.update_last_login, user.id)
        return tokens
