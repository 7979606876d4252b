"""Delegated sign-in flow for Kindle devices.

The device starts a session and polls it; the user finishes the GitHub
sign-in on another device, whose browser lands on the callback:

    initiate(device_id)  ->  pending
    complete(code, state)  pending -> authorized    (GitHub callback)
    poll(session_token)    authorized -> completed  (device receives a token)

Either leg may find the session expired, lazily by its deadline or because
the sweep or a failed GitHub exchange already marked it. Every poll of an
authorized or completed session mints a new bearer token.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from kindlesync.auth.github import GitHubClient
from kindlesync.config import Settings, get_settings
from kindlesync.core.device_registry import DeviceRegistry
from kindlesync.core.exceptions import (
    Conflict,
    Expired,
    InvalidState,
    NotFound,
    ProviderError,
    Unauthorized,
    ValidationError,
)
from kindlesync.core.identity_directory import IdentityDirectory
from kindlesync.core.logging import bind_context, get_logger
from kindlesync.core.session_store import SessionStore, validate_device_id
from kindlesync.core.token_ledger import TokenLedger
from kindlesync.database import utcnow
from kindlesync.models import KindleDevice, OAuthSession, SessionStatus, User

logger = get_logger(__name__)


@dataclass
class InitiateResult:
    """Returned to the device that started sign-in."""
    session_token: str
    authorize_url: str
    expires_at: datetime


@dataclass
class CompleteResult:
    """Shown on the callback page; carries no token."""
    user: User
    device: KindleDevice


@dataclass
class PollResult:
    """Session status as seen by the polling device."""
    status: SessionStatus
    user_token: str | None = None
    user: User | None = None


@dataclass
class RefreshResult:
    user_token: str
    user: User


class AuthOrchestrator:
    """Runs the sign-in protocol over the session, token, user and device stores."""

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings | None = None,
        provider: GitHubClient | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.provider = provider or GitHubClient(self.settings)
        self.clock = clock
        self.sessions = SessionStore(db, clock=clock)
        self.tokens = TokenLedger(db, settings=self.settings, clock=clock)
        self.identities = IdentityDirectory(db, clock=clock)
        self.devices = DeviceRegistry(db, clock=clock)

    async def initiate(self, device_id: str) -> InitiateResult:
        """Open a pending session for ``device_id``."""
        validate_device_id(device_id)
        bind_context(device_id=device_id)

        created = await self.sessions.create(device_id, self.settings.session_expires_in)
        return InitiateResult(
            session_token=created.session_token,
            authorize_url=self.provider.build_authorize_url(created.state),
            expires_at=created.expires_at,
        )

    async def complete(self, code: str, state: str) -> CompleteResult:
        """Finish the GitHub leg for the session identified by ``state``.

        Raises NotFound, Expired, Conflict (already used, or lost a race
        with a concurrent callback) or ProviderError. A provider failure
        expires the session: the code cannot be exchanged twice.
        """
        if not code or not state:
            raise ValidationError("Missing required parameters")

        session = await self.sessions.find_by_state(state)
        if session is None:
            logger.warning("OAuth session not found for callback")
            raise NotFound("Session not found")

        bind_context(device_id=session.device_id)
        # Only the deadline counts here; a session expired by a failed exchange is a replay
        if self.sessions.is_expired(session):
            await self._reject_expired(session)

        if session.status != SessionStatus.PENDING:
            logger.warning(
                "OAuth session already processed",
                session_id=session.id,
                status=session.status.value,
            )
            raise Conflict("Session already processed")

        try:
            provider_token = await self.provider.exchange_code(code)
            profile = await self.provider.fetch_profile(provider_token)
        except ProviderError:
            logger.error("GitHub exchange failed, expiring session", session_id=session.id)
            await self.sessions.transition(session, SessionStatus.EXPIRED)
            raise

        device_id = session.device_id
        user = await self.identities.upsert(profile)
        user_id = user.id
        device = await self.devices.bind(device_id, user_id)

        # A retried insert rolls back, which expires everything loaded before it
        await self.db.refresh(session)
        await self.db.refresh(user)

        if not await self.sessions.transition(session, SessionStatus.AUTHORIZED, user.id):
            logger.warning("Lost authorization race", session_id=session.id, user_id=user.id)
            raise Conflict("Session already processed")

        bind_context(user_id=user.id)
        logger.info(
            "OAuth callback processed successfully",
            session_id=session.id,
            user_id=user.id,
            device_id=device.device_id,
        )
        return CompleteResult(user=user, device=device)

    async def poll(self, session_token: str) -> PollResult:
        """Report session status, handing out a fresh token once authorized."""
        if not session_token:
            raise ValidationError("Session token is required")

        session = await self.sessions.find_by_session_token(session_token)
        if session is None:
            raise NotFound("Session not found")

        bind_context(device_id=session.device_id)
        await self._reject_expired(session)

        status = session.status
        if status == SessionStatus.PENDING:
            return PollResult(status=SessionStatus.PENDING)

        if status not in (SessionStatus.AUTHORIZED, SessionStatus.COMPLETED):
            raise InvalidState(f"Invalid session status: {status.value}")

        user = await self.identities.get(session.user_id) if session.user_id else None
        if user is None:
            raise InvalidState("Authorized session has no user")

        user_token = await self.tokens.issue(user.id)

        # Losing this race is harmless: the token above is valid either way
        if status == SessionStatus.AUTHORIZED:
            await self.sessions.transition(session, SessionStatus.COMPLETED)

        await self.devices.touch(session.device_id)
        return PollResult(status=SessionStatus.AUTHORIZED, user_token=user_token, user=user)

    async def refresh(self, bearer_token: str | None) -> RefreshResult:
        """Rotate ``bearer_token``: revoke it and issue a replacement."""
        user = await self.authenticate(bearer_token)

        # A concurrent refresh or logout already revoked it
        if not await self.tokens.revoke(user.id, bearer_token):
            raise Unauthorized("Invalid or expired token")

        new_token = await self.tokens.issue(user.id)
        logger.info("Token refreshed", user_id=user.id)
        return RefreshResult(user_token=new_token, user=user)

    async def logout(self, bearer_token: str | None) -> None:
        """Revoke ``bearer_token`` and every other token of its owner."""
        user = await self.authenticate(bearer_token)

        await self.tokens.revoke(user.id, bearer_token)
        count = await self.tokens.revoke_all(user.id)
        logger.info("Logged out everywhere", user_id=user.id, revoked=count)

    async def authenticate(self, bearer_token: str | None) -> User:
        """Resolve the owner of a bearer token or raise Unauthorized."""
        user = await self.tokens.validate(bearer_token)
        if user is None:
            raise Unauthorized("Invalid or expired token")
        bind_context(user_id=user.id)
        return user

    async def _reject_expired(self, session: OAuthSession) -> None:
        if session.status_at(self.clock()) != SessionStatus.EXPIRED:
            return

        # Deadline passed but not yet swept: expire it now
        if session.status != SessionStatus.EXPIRED:
            if await self.sessions.transition(session, SessionStatus.EXPIRED):
                logger.info("OAuth session expired", session_id=session.id)
        raise Expired("Session expired")
