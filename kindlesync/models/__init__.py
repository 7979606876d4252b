"""Database models."""

from kindlesync.models.user import User
from kindlesync.models.device import KindleDevice
from kindlesync.models.oauth_session import (
    OAuthSession,
    SessionStatus,
    VALID_TRANSITIONS,
    effective_status,
    is_valid_transition,
    valid_predecessors,
)
from kindlesync.models.access_token import UserToken

__all__ = [
    # Users
    "User",
    # Devices
    "KindleDevice",
    # Authorization sessions
    "OAuthSession",
    "SessionStatus",
    "VALID_TRANSITIONS",
    "effective_status",
    "is_valid_transition",
    "valid_predecessors",
    # Bearer tokens
    "UserToken",
]
