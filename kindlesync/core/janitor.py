"""Periodic housekeeping for sessions and tokens.

Nothing depends on this running: expired sessions are rejected lazily on
read and expired tokens fail validation. The sweep only keeps the status
column honest and the token table small. It is triggered from outside
(cron, a scheduler) through ``kindlesync.cli.janitor_cli``.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from kindlesync.core.logging import get_logger, log_operation
from kindlesync.core.session_store import SessionStore
from kindlesync.core.token_ledger import TokenLedger
from kindlesync.database import utcnow

logger = get_logger(__name__)


@dataclass
class SweepReport:
    sessions_expired: int
    tokens_purged: int

    def to_dict(self) -> dict:
        return asdict(self)


class Janitor:
    """Expires stale sessions and deletes expired tokens."""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.sessions = SessionStore(db, clock=clock)
        self.tokens = TokenLedger(db, clock=clock)

    @log_operation("janitor sweep")
    async def run(self) -> SweepReport:
        report = SweepReport(
            sessions_expired=await self.sessions.sweep_expired(),
            tokens_purged=await self.tokens.purge_expired(),
        )
        logger.info("Janitor sweep finished", **report.to_dict())
        return report
