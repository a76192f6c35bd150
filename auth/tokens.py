"""
auth/tokens.py -- JWT issuing / verification and password hashing.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with two
       distinct secrets (JWT_ACCESS_SECRET / JWT_REFRESH_SECRET) so a token of
       one kind can never pass verification as the other. Verification raises
       UnauthorizedError on any failure -- the error handler turns that into
       a 401.

  Every token carries a "type" claim ("access" or "refresh") that verify_*
       checks, so a token is rejected as the wrong kind even if the two
       secrets were ever configured alike.

  Refresh tokens carry a random jti claim. Without it two refresh tokens
       issued for the same user within the same second would be byte-identical
       and collide on the sessions.refresh_token UNIQUE constraint.

  Passwords: bcrypt, used directly, cost factor from BCRYPT_ROUNDS (>= 12).
       The _DUMMY_HASH constant enables timing equalization in
       auth/credentials.py so response time does not reveal whether an email
       exists.

Layer rule: no imports from api/ or cache/. Import from core/ is allowed.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.models import Role, TokenPair, TokenPayload
from core.errors import UnauthorizedError

if TYPE_CHECKING:
    from auth.models import User
    from core.config import Settings

logger = logging.getLogger("authgate.auth")

_ALGORITHM = "HS256"

# bcrypt's input limit, in bytes.
MAX_PASSWORD_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt rejects input longer than 72 bytes (ValueError). Request models
    cap passwords at MAX_PASSWORD_BYTES UTF-8 bytes before they get here.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in storage.
        return False


# Timing equalization dummy hash, computed once at module load so the first
# login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("authgate_timing_dummy")


# ---------------------------------------------------------------------------
# Token issuer
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Signs and verifies access / refresh JWTs.

    Usage:
        issuer = TokenIssuer(get_settings())
        pair = await issuer.generate_tokens(user)
        principal = issuer.verify_access_token(pair.access_token)
        user_id = issuer.verify_refresh_token(pair.refresh_token)
    """

    def __init__(self, settings: Settings) -> None:
        self._access_secret = settings.jwt_access_secret
        self._refresh_secret = settings.jwt_refresh_secret
        self.access_ttl = timedelta(seconds=settings.access_token_ttl)
        self.refresh_ttl = timedelta(seconds=settings.refresh_token_ttl)

    def _sign(self, claims: dict, secret: str, ttl: timedelta) -> str:
        now = datetime.now(timezone.utc)
        payload = {**claims, "iat": now, "exp": now + ttl}
        return jwt.encode(payload, secret, algorithm=_ALGORITHM)

    def create_access_token(self, user: User) -> str:
        claims = {
            "sub": user.id,
            "type": "access",
            "email": user.email,
            "username": user.username,
            "role": Role(user.role).value,
        }
        return self._sign(claims, self._access_secret, self.access_ttl)

    def create_refresh_token(self, user: User) -> str:
        claims = {"sub": user.id, "type": "refresh", "jti": secrets.token_hex(16)}
        return self._sign(claims, self._refresh_secret, self.refresh_ttl)

    async def generate_tokens(self, user: User) -> TokenPair:
        """Sign the access and refresh tokens concurrently. Signing errors propagate."""
        access, refresh = await asyncio.gather(
            asyncio.to_thread(self.create_access_token, user),
            asyncio.to_thread(self.create_refresh_token, user),
        )
        return TokenPair(access_token=access, refresh_token=refresh)

    def refresh_expiry(self) -> datetime:
        """Absolute expiry for a session created now."""
        return datetime.now(timezone.utc) + self.refresh_ttl

    def verify_access_token(self, token: str) -> TokenPayload:
        """Decode an access token into its principal. Raises UnauthorizedError on any failure."""
        try:
            payload = jwt.decode(token, self._access_secret, algorithms=[_ALGORITHM])
            if payload.get("type") != "access":
                raise JWTError("not an access token")
            return TokenPayload(
                sub=payload["sub"],
                email=payload["email"],
                username=payload["username"],
                role=Role(payload["role"]),
            )
        except (JWTError, KeyError, ValueError) as exc:
            logger.debug("Access token rejected: %s", exc)
            raise UnauthorizedError("Invalid or expired access token") from exc

    def verify_refresh_token(self, token: str) -> str:
        """Verify a refresh token signature and expiry; return its subject."""
        try:
            payload = jwt.decode(token, self._refresh_secret, algorithms=[_ALGORITHM])
            if payload.get("type") != "refresh":
                raise JWTError("not a refresh token")
            return payload["sub"]
        except (JWTError, KeyError) as exc:
            logger.debug("Refresh token rejected: %s", exc)
            raise UnauthorizedError("Invalid refresh token") from exc
