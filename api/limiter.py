"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/middleware.py (mounted through SlowAPIMiddleware) and in
route modules that apply a stricter per-route limit with @limiter.limit().

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

default_limits are the global per-IP tiers from RATE_LIMIT_TIERS; every tier
applies at once, so a client is held to the tightest one it has hit.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=_settings.rate_limits,
    storage_uri="memory://",
    enabled=_settings.rate_limit_enabled,
)
