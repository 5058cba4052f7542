"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in route modules (to
apply per-route limits with @limiter.limit()).

One shared instance means all routes share one counter store. The store is
chosen by RATE_LIMIT_STORAGE_URI: memory:// keeps per-process counters that
expire with their window; a redis:// URI shares them across instances.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri=get_settings().rate_limit_storage_uri)


def login_rate_limit() -> str:
    """Current login limit string, read per request so tests can tighten it."""
    return get_settings().login_rate_limit
