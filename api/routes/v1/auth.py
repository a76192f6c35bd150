"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register         -- create account; 201 tokens + user
  POST /api/v1/auth/login            -- email/password login; tokens + user
  POST /api/v1/auth/refresh          -- rotate a refresh token; new pair
  POST /api/v1/auth/logout           -- revoke one refresh token; 204
  POST /api/v1/auth/logout-all       -- revoke every session of the caller; 204
  GET  /api/v1/auth/profile          -- caller's profile
  POST /api/v1/auth/change-password  -- replace password, revoke all sessions; 204
  GET  /api/v1/auth/sessions         -- caller's session counts

Access requirements are declared in ROUTES and enforced through
authorize(route_id); api/main.py loads ROUTES into the app's RouteTable.

Security:
  POST /login is rate-limited per IP (LOGIN_RATE_LIMIT) on top of the global tiers.
  Cache-Control: no-store on every response that carries tokens or per-user data.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.interceptors.base import InterceptedRoute
from api.limiter import limiter
from api.models import (
    AuthResponse,
    ChangePasswordRequest,
    LoginRequest,
    RefreshTokenRequest,
    RegisterRequest,
    SessionStatsResponse,
    TokenResponse,
    UserResponse,
)
from auth.dependencies import authorize
from auth.guards import AUTHENTICATED, PUBLIC, RouteRequirement
from auth.models import TokenPayload
from auth.service import AuthResult, AuthService
from core.config import get_settings

_settings = get_settings()

ROUTES: dict[str, RouteRequirement] = {
    "auth.register": PUBLIC,
    "auth.login": PUBLIC,
    "auth.refresh": PUBLIC,
    "auth.logout": AUTHENTICATED,
    "auth.logout_all": AUTHENTICATED,
    "auth.profile": AUTHENTICATED,
    "auth.change_password": AUTHENTICATED,
    "auth.sessions": AUTHENTICATED,
}

router = APIRouter(route_class=InterceptedRoute)

_NO_STORE = "no-store"
_PRIVATE = "private, no-store"


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _auth_response(result: AuthResult) -> AuthResponse:
    return AuthResponse(
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
        user=UserResponse.from_user(result.user),
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
async def register(
    request: Request,
    response: Response,
    body: RegisterRequest,
    _: TokenPayload | None = Depends(authorize("auth.register")),
) -> AuthResponse:
    """Create an account and open its first session."""
    result = await _service(request).register(
        email=body.email,
        username=body.username,
        first_name=body.first_name or "",
        last_name=body.last_name or "",
        password=body.password,
    )
    response.headers["Cache-Control"] = _NO_STORE
    return _auth_response(result)


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=AuthResponse)
async def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    _: TokenPayload | None = Depends(authorize("auth.login")),
) -> AuthResponse:
    """Authenticate with email and password.

    Wrong email and wrong password both produce the same 401 "Invalid
    credentials" so the response does not reveal which one was wrong.
    """
    result = await _service(request).login(body.email, body.password)
    response.headers["Cache-Control"] = _NO_STORE
    return _auth_response(result)


@router.post("/auth/refresh", response_model=TokenResponse)
async def refresh(
    request: Request,
    response: Response,
    body: RefreshTokenRequest,
    _: TokenPayload | None = Depends(authorize("auth.refresh")),
) -> TokenResponse:
    """Exchange a refresh token for a new pair. The presented token stops working."""
    tokens = await _service(request).refresh_token(body.refresh_token)
    response.headers["Cache-Control"] = _NO_STORE
    return TokenResponse(access_token=tokens.access_token, refresh_token=tokens.refresh_token)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", status_code=204)
async def logout(
    request: Request,
    body: RefreshTokenRequest,
    _: TokenPayload = Depends(authorize("auth.logout")),
) -> None:
    """Revoke the given refresh token. Unknown or already revoked tokens are ignored."""
    await _service(request).logout(body.refresh_token)


@router.post("/auth/logout-all", status_code=204)
async def logout_all(
    request: Request,
    user: TokenPayload = Depends(authorize("auth.logout_all")),
) -> None:
    await _service(request).logout_all_devices(user.sub)


@router.get("/auth/profile", response_model=UserResponse)
async def profile(
    request: Request,
    response: Response,
    user: TokenPayload = Depends(authorize("auth.profile")),
) -> UserResponse:
    current = await _service(request).get_profile(user.sub)
    response.headers["Cache-Control"] = _PRIVATE
    return UserResponse.from_user(current)


@router.post("/auth/change-password", status_code=204)
async def change_password(
    request: Request,
    body: ChangePasswordRequest,
    user: TokenPayload = Depends(authorize("auth.change_password")),
) -> None:
    """Replace the caller's password. Every session, including the current one, is revoked."""
    await _service(request).change_password(user.sub, body.current_password, body.new_password)


@router.get("/auth/sessions", response_model=SessionStatsResponse)
async def sessions(
    request: Request,
    response: Response,
    user: TokenPayload = Depends(authorize("auth.sessions")),
) -> SessionStatsResponse:
    stats = await _service(request).session_stats(user.sub)
    response.headers["Cache-Control"] = _PRIVATE
    return SessionStatsResponse(**stats)
