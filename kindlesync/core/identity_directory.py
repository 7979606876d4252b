"""User records keyed by GitHub id."""

from datetime import datetime
from typing import Callable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from kindlesync.auth.github import ProviderProfile
from kindlesync.core.logging import get_logger
from kindlesync.database import utcnow
from kindlesync.models import User

logger = get_logger(__name__)


class IdentityDirectory:
    """Creates users on first sign-in and refreshes them on every later one."""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    async def get(self, user_id: str) -> User | None:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def find_by_external_id(self, github_uid: str) -> User | None:
        result = await self.db.execute(select(User).where(User.github_uid == github_uid))
        return result.scalar_one_or_none()

    async def upsert(self, profile: ProviderProfile) -> User:
        """Insert or update the user for ``profile.external_id``."""
        now = self.clock()
        user = await self.find_by_external_id(profile.external_id)

        if user:
            user.username = profile.display_name
            user.avatar_url = profile.avatar_url
            user.last_login_at = now
            await self.db.commit()
            logger.info("Updated existing user", user_id=user.id, github_uid=profile.external_id)
        else:
            user = User(
                github_uid=profile.external_id,
                username=profile.display_name,
                avatar_url=profile.avatar_url,
                created_at=now,
                last_login_at=now,
            )
            self.db.add(user)
            try:
                await self.db.commit()
            except IntegrityError:
                # Another sign-in for the same account inserted first
                await self.db.rollback()
                return await self.upsert(profile)
            logger.info("Created new user", user_id=user.id, github_uid=profile.external_id)

        await self.db.refresh(user)
        return user
