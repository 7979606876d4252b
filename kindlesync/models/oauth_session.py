"""Authorization session model and its state machine."""

from datetime import datetime
from enum import Enum

from sqlalchemy import String, ForeignKey, Integer, Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from kindlesync.database import Base, UTCDateTime, as_utc, utcnow


class SessionStatus(str, Enum):
    """Status of an authorization session."""
    PENDING = "pending"
    AUTHORIZED = "authorized"
    COMPLETED = "completed"
    EXPIRED = "expired"


# Allowed moves; anything not listed is rejected by transition()
VALID_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.PENDING: frozenset({SessionStatus.AUTHORIZED, SessionStatus.EXPIRED}),
    SessionStatus.AUTHORIZED: frozenset({SessionStatus.COMPLETED, SessionStatus.EXPIRED}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.EXPIRED: frozenset(),
}


def is_valid_transition(current: SessionStatus, new: SessionStatus) -> bool:
    return new in VALID_TRANSITIONS[current]


def valid_predecessors(new: SessionStatus) -> list[SessionStatus]:
    """Statuses from which a session may move to ``new``."""
    return [status for status, targets in VALID_TRANSITIONS.items() if new in targets]


def effective_status(status: SessionStatus, expires_at: datetime, now: datetime) -> SessionStatus:
    """Status a session should be treated as having at ``now``.

    Sessions past their deadline read as expired whatever the stored status
    says, so correctness never waits on the sweep.
    """
    if as_utc(now) >= as_utc(expires_at):
        return SessionStatus.EXPIRED
    return status


class OAuthSession(Base):
    """Short-lived handshake between a polling device and a browser sign-in."""

    __tablename__ = "oauth_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Handed to the polling device
    session_token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    # Round-trips through GitHub; the only key the callback can look up by
    state: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    device_id: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[SessionStatus] = mapped_column(
        SQLEnum(
            SessionStatus,
            name="oauth_session_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=SessionStatus.PENDING,
        index=True,
    )
    user_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow
    )
    expires_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        index=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True
    )

    def status_at(self, now: datetime) -> SessionStatus:
        return effective_status(self.status, self.expires_at, now)

    def __repr__(self) -> str:
        return f"<OAuthSession {self.id} {self.status.value}>"
