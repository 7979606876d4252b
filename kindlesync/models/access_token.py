"""Bearer token model for device access."""

from datetime import datetime

from sqlalchemy import String, ForeignKey, Integer
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from kindlesync.database import Base, UTCDateTime, as_utc, utcnow


class UserToken(Base):
    """Long-lived bearer token issued to a device after sign-in.

    Only the SHA-256 hash of the bearer string is stored. Rows are never
    updated except to set revoked_at, and are deleted once past expires_at.
    """

    __tablename__ = "user_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    def is_valid_at(self, now: datetime) -> bool:
        """Unrevoked and not yet expired."""
        if self.revoked_at is not None:
            return False
        return as_utc(now) < as_utc(self.expires_at)

    def __repr__(self) -> str:
        return f"<UserToken id={self.id} user={self.user_id}>"
