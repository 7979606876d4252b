"""API routes."""

from kindlesync.api.auth import router as auth_router
from kindlesync.api.callback import router as callback_router

__all__ = [
    "auth_router",
    "callback_router",
]
