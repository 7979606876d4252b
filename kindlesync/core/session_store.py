"""Authorization session persistence.

``transition`` is the only place session status changes, and it is a single
conditional UPDATE: the row moves only if its stored status is still a valid
predecessor of the new one. Concurrent callbacks, polls and the sweep can
therefore race freely; at most one of them wins each move.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from kindlesync.core.exceptions import InvalidInput
from kindlesync.core.logging import get_logger
from kindlesync.database import as_utc, utcnow
from kindlesync.models import OAuthSession, SessionStatus, valid_predecessors

logger = get_logger(__name__)

MAX_DEVICE_ID_LENGTH = 100
TOKEN_BYTES = 32
# Attempts at drawing an unused state before giving up
MAX_CREATE_ATTEMPTS = 3


@dataclass(frozen=True)
class CreatedSession:
    """What initiate() needs from a freshly stored session."""
    session_token: str
    state: str
    expires_at: datetime


def validate_device_id(device_id: str | None) -> str:
    """Return the device id or raise InvalidInput."""
    if not isinstance(device_id, str) or not device_id:
        raise InvalidInput("Device ID is required")
    if len(device_id) > MAX_DEVICE_ID_LENGTH:
        raise InvalidInput(f"Device ID must be at most {MAX_DEVICE_ID_LENGTH} characters")
    return device_id


class SessionStore:
    """Stores authorization sessions and moves them through their states."""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    async def create(self, device_id: str, expires_in: timedelta | int) -> CreatedSession:
        """Persist a new pending session for ``device_id``."""
        validate_device_id(device_id)
        if not isinstance(expires_in, timedelta):
            expires_in = timedelta(seconds=expires_in)

        for attempt in range(1, MAX_CREATE_ATTEMPTS + 1):
            session_token = secrets.token_urlsafe(TOKEN_BYTES)
            state = secrets.token_urlsafe(TOKEN_BYTES)

            if await self.find_by_state(state) is not None:
                logger.warning("Provider state collision, regenerating", attempt=attempt)
                continue

            now = self.clock()
            session = OAuthSession(
                session_token=session_token,
                state=state,
                device_id=device_id,
                status=SessionStatus.PENDING,
                created_at=now,
                expires_at=now + expires_in,
            )
            self.db.add(session)
            try:
                await self.db.commit()
            except IntegrityError:
                # A concurrent insert took the same token or state
                await self.db.rollback()
                logger.warning("Session token collision on insert, regenerating", attempt=attempt)
                continue

            logger.info("Authorization session created", session_id=session.id, device_id=device_id)
            return CreatedSession(
                session_token=session_token,
                state=state,
                expires_at=as_utc(session.expires_at),
            )

        raise RuntimeError("Could not allocate a unique authorization session")

    async def find_by_session_token(self, session_token: str) -> OAuthSession | None:
        result = await self.db.execute(
            select(OAuthSession)
            .where(OAuthSession.session_token == session_token)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_by_state(self, state: str) -> OAuthSession | None:
        result = await self.db.execute(
            select(OAuthSession)
            .where(OAuthSession.state == state)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def transition(
        self,
        session: OAuthSession,
        new_status: SessionStatus,
        user_id: str | None = None,
    ) -> bool:
        """Move ``session`` to ``new_status`` if its stored status allows it.

        Returns False without changing anything when the stored status is
        not a valid predecessor, including when another request got there
        first. ``session`` is refreshed from the database either way.
        """
        predecessors = valid_predecessors(new_status)
        if not predecessors:
            return False

        values: dict = {"status": new_status}
        if user_id is not None:
            values["user_id"] = user_id
        if new_status in (SessionStatus.AUTHORIZED, SessionStatus.COMPLETED):
            values["completed_at"] = self.clock()

        result = await self.db.execute(
            update(OAuthSession)
            .where(OAuthSession.id == session.id)
            .where(OAuthSession.status.in_(predecessors))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self.db.refresh(session)

        moved = result.rowcount == 1
        if moved:
            logger.info(
                "Authorization session transitioned",
                session_id=session.id,
                new_status=new_status.value,
            )
        else:
            logger.info(
                "Authorization session transition rejected",
                session_id=session.id,
                new_status=new_status.value,
                current_status=session.status.value,
            )
        return moved

    def is_expired(self, session: OAuthSession) -> bool:
        """True once the session's deadline has passed, whatever its status."""
        return as_utc(self.clock()) >= as_utc(session.expires_at)

    async def sweep_expired(self) -> int:
        """Mark every pending or authorized session past its deadline as expired."""
        result = await self.db.execute(
            update(OAuthSession)
            .where(OAuthSession.status.in_(valid_predecessors(SessionStatus.EXPIRED)))
            .where(OAuthSession.expires_at <= self.clock())
            .values(status=SessionStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        count = result.rowcount or 0
        logger.info("Expired stale authorization sessions", count=count)
        return count
