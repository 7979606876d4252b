"""Kindle device binding model."""

from datetime import datetime

from sqlalchemy import String, ForeignKey, Integer
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from kindlesync.database import Base, UTCDateTime, utcnow


class KindleDevice(Base):
    """A physical Kindle bound to exactly one user at a time."""

    __tablename__ = "kindle_devices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    device_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    device_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    bound_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow
    )
    last_sync_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True
    )

    def __repr__(self) -> str:
        return f"<KindleDevice {self.device_id} user={self.user_id}>"
