"""
auth/guards.py -- Role-based access control.

RoleGuard is a pure decision function. RouteTable is the explicit,
centrally-declared map from route identifier to access requirement; routes
reference it by id through auth.dependencies.authorize(route_id).

Route ids absent from the table default to "authenticated, any role", so
forgetting to register a route never makes it public.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from auth.models import Role, TokenPayload
from core.errors import ForbiddenError


@dataclass(frozen=True)
class RouteRequirement:
    public: bool = False
    roles: frozenset[Role] = field(default_factory=frozenset)


PUBLIC = RouteRequirement(public=True)
AUTHENTICATED = RouteRequirement()


def roles(*required: Role) -> RouteRequirement:
    return RouteRequirement(roles=frozenset(required))


class RoleGuard:
    @staticmethod
    def can_activate(required_roles: Iterable[Role] | None, user: TokenPayload | None) -> bool:
        """Return True when access is allowed; raise ForbiddenError otherwise."""
        required = frozenset(required_roles or ())
        if not required:
            return True
        if user is None:
            raise ForbiddenError("User not authenticated")
        if user.role not in required:
            names = ", ".join(sorted(r.value for r in required))
            raise ForbiddenError(f"Access denied. Required roles: {names}")
        return True


class RouteTable:
    """Registry of route id -> RouteRequirement."""

    def __init__(self, entries: dict[str, RouteRequirement] | None = None) -> None:
        self._entries: dict[str, RouteRequirement] = dict(entries or {})

    def register(self, route_id: str, requirement: RouteRequirement) -> None:
        self._entries[route_id] = requirement

    def requirement_for(self, route_id: str) -> RouteRequirement:
        return self._entries.get(route_id, AUTHENTICATED)

    def __contains__(self, route_id: str) -> bool:
        return route_id in self._entries
