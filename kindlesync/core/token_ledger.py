"""Bearer token issuance and revocation."""

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from kindlesync.config import Settings, get_settings
from kindlesync.core.logging import get_logger
from kindlesync.database import utcnow
from kindlesync.models import User, UserToken

logger = get_logger(__name__)


def hash_token(token: str) -> str:
    """SHA-256 hex digest used as the lookup key for a bearer token."""
    return hashlib.sha256(token.encode()).hexdigest()


class TokenLedger:
    """Issues, validates and revokes device bearer tokens.

    Tokens are additive: issuing one never touches another, so concurrent
    issuance for the same user needs no coordination.
    """

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.clock = clock

    def generate_token(self) -> str:
        return self.settings.user_token_prefix + secrets.token_hex(self.settings.user_token_bytes)

    def looks_like_token(self, token: str | None) -> bool:
        """Cheap shape check done before touching the database."""
        if not token:
            return False
        prefix = self.settings.user_token_prefix
        return hmac.compare_digest(token[:len(prefix)], prefix) and len(token) > len(prefix)

    async def issue(self, user_id: str, ttl: timedelta | int | None = None) -> str:
        """Create a new token for ``user_id`` and return the bearer string."""
        if ttl is None:
            ttl = self.settings.user_token_lifetime
        if not isinstance(ttl, timedelta):
            ttl = timedelta(seconds=ttl)

        token = self.generate_token()
        now = self.clock()
        self.db.add(UserToken(
            token_hash=hash_token(token),
            user_id=user_id,
            created_at=now,
            expires_at=now + ttl,
        ))
        await self.db.commit()

        logger.info("Issued access token", user_id=user_id)
        return token

    async def validate(self, token: str | None) -> User | None:
        """Return the owner of ``token`` if it is unrevoked and unexpired."""
        if not self.looks_like_token(token):
            return None

        result = await self.db.execute(
            select(User)
            .join(UserToken, UserToken.user_id == User.id)
            .where(UserToken.token_hash == hash_token(token))
            .where(UserToken.revoked_at.is_(None))
            .where(UserToken.expires_at > self.clock())
        )
        return result.scalar_one_or_none()

    async def revoke(self, user_id: str, token: str) -> bool:
        """Revoke ``token`` if ``user_id`` owns it and it is not already revoked."""
        if not self.looks_like_token(token):
            return False

        result = await self.db.execute(
            update(UserToken)
            .where(UserToken.token_hash == hash_token(token))
            .where(UserToken.user_id == user_id)
            .where(UserToken.revoked_at.is_(None))
            .values(revoked_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        revoked = result.rowcount == 1
        if revoked:
            logger.info("Revoked access token", user_id=user_id)
        return revoked

    async def revoke_all(self, user_id: str) -> int:
        """Revoke every currently valid token owned by ``user_id``."""
        now = self.clock()
        result = await self.db.execute(
            update(UserToken)
            .where(UserToken.user_id == user_id)
            .where(UserToken.revoked_at.is_(None))
            .where(UserToken.expires_at > now)
            .values(revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        count = result.rowcount or 0
        logger.info("Revoked all access tokens", user_id=user_id, count=count)
        return count

    async def purge_expired(self) -> int:
        """Delete tokens past their expiry; they can no longer validate."""
        result = await self.db.execute(
            delete(UserToken)
            .where(UserToken.expires_at <= self.clock())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        count = result.rowcount or 0
        logger.info("Purged expired access tokens", count=count)
        return count
