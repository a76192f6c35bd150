"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens arrive as `Authorization: Bearer <token>`. The decoded token
payload is the principal; no database read happens on the request path.

authorize(route_id) is the single entry point routes use. It looks up the
route's requirement in app.state.route_table at request time:
  - public route      -> returns the principal if a valid token was sent, else None
  - protected route   -> 401 without a valid token
  - role-gated route  -> 401 without a valid token, 403 on role mismatch

auth/dependencies.py may import from fastapi because it is part of the
FastAPI dependency injection system. No imports from api/ or cache/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.guards import RoleGuard, RouteTable
from auth.models import TokenPayload
from auth.tokens import TokenIssuer
from core.errors import UnauthorizedError


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def try_get_current_user(request: Request) -> TokenPayload | None:
    """Return the principal of a valid Bearer token, or None. Never raises."""
    token = _bearer_token(request)
    if token is None:
        return None
    issuer: TokenIssuer = request.app.state.token_issuer
    try:
        return issuer.verify_access_token(token)
    except UnauthorizedError:
        return None


def get_current_user(request: Request) -> TokenPayload:
    """Require authentication. Raises UnauthorizedError (401) otherwise."""
    token = _bearer_token(request)
    if token is None:
        raise UnauthorizedError("Authentication required")
    issuer: TokenIssuer = request.app.state.token_issuer
    return issuer.verify_access_token(token)


def authorize(route_id: str) -> Callable[[Request], TokenPayload | None]:
    """Build a dependency enforcing the RouteTable entry for route_id.

    Use as a FastAPI dependency:
        @router.get("/auth/profile")
        async def profile(user: TokenPayload = Depends(authorize("auth.profile"))): ...
    """

    def dependency(request: Request) -> TokenPayload | None:
        table: RouteTable = request.app.state.route_table
        requirement = table.requirement_for(route_id)
        if requirement.public:
            return try_get_current_user(request)
        user = get_current_user(request)
        RoleGuard.can_activate(requirement.roles, user)
        request.state.user = user
        return user

    return dependency
