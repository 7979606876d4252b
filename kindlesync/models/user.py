"""User model for GitHub-authenticated users."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from kindlesync.database import Base, UTCDateTime, utcnow


class User(Base):
    """User account linked to GitHub."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4())
    )
    # GitHub numeric id, stored as text; never changes for an account
    github_uid: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow
    )
    last_login_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True
    )

    def summary(self) -> dict:
        """Public profile fields returned to devices as user_info."""
        return {
            "id": self.id,
            "username": self.username,
            "avatar_url": self.avatar_url,
        }

    def __repr__(self) -> str:
        return f"<User {self.username}>"
