"""Device to user bindings."""

from datetime import datetime
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from kindlesync.core.logging import get_logger
from kindlesync.database import utcnow
from kindlesync.models import KindleDevice, User

logger = get_logger(__name__)


class DeviceRegistry:
    """Maps each physical Kindle to the user currently signed in on it.

    A device signed in by a different user is reassigned to that user (last
    writer wins); the previous owner is not notified.
    """

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    async def get(self, device_id: str) -> KindleDevice | None:
        result = await self.db.execute(
            select(KindleDevice).where(KindleDevice.device_id == device_id)
        )
        return result.scalar_one_or_none()

    async def bind(self, device_id: str, user_id: str) -> KindleDevice:
        """Bind ``device_id`` to ``user_id``, creating or reassigning the row."""
        now = self.clock()
        device = await self.get(device_id)

        if device is None:
            device = KindleDevice(
                device_id=device_id,
                user_id=user_id,
                bound_at=now,
                last_sync_at=now,
            )
            self.db.add(device)
            try:
                await self.db.commit()
            except IntegrityError:
                # Bound concurrently; fall through to reassignment
                await self.db.rollback()
                return await self.bind(device_id, user_id)
            logger.info("Created new device", device_id=device_id, user_id=user_id)
        else:
            if device.user_id != user_id:
                logger.warning(
                    "Device reassigned to a different user",
                    device_id=device_id,
                    previous_user_id=device.user_id,
                    user_id=user_id,
                )
                device.user_id = user_id
                device.bound_at = now
            device.last_sync_at = now
            await self.db.commit()

        await self.db.refresh(device)
        return device

    async def resolve(self, device_id: str) -> User | None:
        """User that uploads from ``device_id`` are attributed to."""
        result = await self.db.execute(
            select(User)
            .join(KindleDevice, KindleDevice.user_id == User.id)
            .where(KindleDevice.device_id == device_id)
        )
        return result.scalar_one_or_none()

    async def touch(self, device_id: str) -> bool:
        """Record activity on ``device_id``; False if it is not bound."""
        result = await self.db.execute(
            update(KindleDevice)
            .where(KindleDevice.device_id == device_id)
            .values(last_sync_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1
