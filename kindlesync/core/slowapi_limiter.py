"""Shared slowapi rate limiter instance.

Kept out of main.py so routers can apply limits without importing the app.
Set RATE_LIMIT_ENABLED=false to turn limits off (tests do).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from kindlesync.config import get_settings

limiter = Limiter(
    key_func=get_remote_address,
    enabled=get_settings().rate_limit_enabled,
)
