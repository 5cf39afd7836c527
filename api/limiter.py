"""
api/limiter.py -- The one slowapi Limiter shared by every route module.

api/main.py mounts it as middleware and registers it on app.state;
api/routes/v1/auth.py decorates signup and signin with @limiter.limit().
A second Limiter instance would keep its own counters and never trip.

Keys are the client IP. Counters live in process memory, so limits are per
worker process.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def auth_rate_limit() -> str:
    """AUTH_RATE_LIMIT (e.g. "10/minute"), resolved when the limit is first checked."""
    return get_settings().auth_rate_limit
