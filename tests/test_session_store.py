"""Tests for authorization session storage and its state machine.

Tests cover:
- Transition table and lazy expiry
- Session creation and device id validation
- Conditional transitions, including stale readers
- Expiry sweep
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from kindlesync.core.exceptions import InvalidInput, ValidationError
from kindlesync.core import session_store
from kindlesync.core.session_store import SessionStore
from kindlesync.models import (
    OAuthSession,
    SessionStatus,
    effective_status,
    is_valid_transition,
    valid_predecessors,
)


ALLOWED = {
    (SessionStatus.PENDING, SessionStatus.AUTHORIZED),
    (SessionStatus.PENDING, SessionStatus.EXPIRED),
    (SessionStatus.AUTHORIZED, SessionStatus.COMPLETED),
    (SessionStatus.AUTHORIZED, SessionStatus.EXPIRED),
}


class TestStateMachine:
    """Tests for the transition table."""

    @pytest.mark.parametrize("current", list(SessionStatus))
    @pytest.mark.parametrize("new", list(SessionStatus))
    def test_only_listed_transitions_are_valid(self, current, new):
        assert is_valid_transition(current, new) == ((current, new) in ALLOWED)

    def test_predecessors(self):
        assert valid_predecessors(SessionStatus.AUTHORIZED) == [SessionStatus.PENDING]
        assert valid_predecessors(SessionStatus.COMPLETED) == [SessionStatus.AUTHORIZED]
        assert set(valid_predecessors(SessionStatus.EXPIRED)) == {
            SessionStatus.PENDING,
            SessionStatus.AUTHORIZED,
        }
        assert valid_predecessors(SessionStatus.PENDING) == []

    def test_effective_status_before_deadline(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert effective_status(SessionStatus.PENDING, now + timedelta(seconds=1), now) == SessionStatus.PENDING
        assert effective_status(SessionStatus.AUTHORIZED, now + timedelta(seconds=1), now) == SessionStatus.AUTHORIZED

    @pytest.mark.parametrize("status", list(SessionStatus))
    def test_effective_status_after_deadline_is_expired(self, status):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert effective_status(status, now - timedelta(seconds=1), now) == SessionStatus.EXPIRED

    def test_effective_status_accepts_naive_stored_time(self):
        """SQLite hands back naive datetimes."""
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        stored = datetime(2025, 12, 31, 23, 59)
        assert effective_status(SessionStatus.PENDING, stored, now) == SessionStatus.EXPIRED


class TestCreate:
    """Tests for session creation."""

    @pytest.mark.asyncio
    async def test_create_pending_session(self, db_session, clock):
        store = SessionStore(db_session, clock=clock)
        created = await store.create("kindle-123", 300)

        assert created.expires_at == clock.now + timedelta(seconds=300)
        assert created.session_token != created.state

        session = await store.find_by_session_token(created.session_token)
        assert session is not None
        assert session.device_id == "kindle-123"
        assert session.status == SessionStatus.PENDING
        assert session.user_id is None
        assert session.completed_at is None

        by_state = await store.find_by_state(created.state)
        assert by_state.id == session.id

    @pytest.mark.asyncio
    async def test_tokens_are_unique(self, db_session, clock):
        store = SessionStore(db_session, clock=clock)
        first = await store.create("kindle-1", 300)
        second = await store.create("kindle-1", 300)

        assert first.session_token != second.session_token
        assert first.state != second.state

    @pytest.mark.asyncio
    async def test_correlation_token_is_not_a_state(self, db_session, clock):
        store = SessionStore(db_session, clock=clock)
        created = await store.create("kindle-1", 300)

        assert await store.find_by_state(created.session_token) is None
        assert await store.find_by_session_token(created.state) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("device_id", ["", None, "x" * 101])
    async def test_invalid_device_id(self, db_session, clock, device_id):
        store = SessionStore(db_session, clock=clock)
        with pytest.raises(InvalidInput):
            await store.create(device_id, 300)

    @pytest.mark.asyncio
    async def test_device_id_at_limit(self, db_session, clock):
        store = SessionStore(db_session, clock=clock)
        created = await store.create("x" * 100, 300)
        assert created.session_token

    def test_invalid_input_is_a_validation_error(self):
        assert issubclass(InvalidInput, ValidationError)

    @pytest.mark.asyncio
    async def test_lookup_miss_returns_none(self, db_session, clock):
        store = SessionStore(db_session, clock=clock)
        assert await store.find_by_session_token("nope") is None
        assert await store.find_by_state("nope") is None

    @pytest.mark.asyncio
    async def test_token_taken_on_insert_is_regenerated(self, db_session, clock, monkeypatch):
        store = SessionStore(db_session, clock=clock)
        first = await store.create("kindle-1", 300)

        drawn = iter([first.session_token, "state-a", "token-b", "state-b"])
        monkeypatch.setattr(session_store.secrets, "token_urlsafe", lambda nbytes: next(drawn))

        second = await store.create("kindle-2", 300)

        assert second.session_token == "token-b"
        assert second.state == "state-b"
        assert await store.find_by_state("state-a") is None
        original = await store.find_by_session_token(first.session_token)
        assert original.device_id == "kindle-1"

    @pytest.mark.asyncio
    async def test_gives_up_after_repeated_collisions(self, db_session, clock, monkeypatch):
        store = SessionStore(db_session, clock=clock)
        first = await store.create("kindle-1", 300)

        tokens = iter([first.session_token, "state-0"] * session_store.MAX_CREATE_ATTEMPTS)
        monkeypatch.setattr(session_store.secrets, "token_urlsafe", lambda nbytes: next(tokens))

        with pytest.raises(RuntimeError):
            await store.create("kindle-2", 300)


class TestTransition:
    """Tests for the conditional status update."""

    @pytest.mark.asyncio
    async def test_full_happy_path(self, db_session, clock, test_user):
        store = SessionStore(db_session, clock=clock)
        created = await store.create("kindle-1", 300)
        session = await store.find_by_session_token(created.session_token)

        assert await store.transition(session, SessionStatus.AUTHORIZED, test_user.id)
        assert session.status == SessionStatus.AUTHORIZED
        assert session.user_id == test_user.id
        assert session.completed_at is not None

        assert await store.transition(session, SessionStatus.COMPLETED)
        assert session.status == SessionStatus.COMPLETED
        assert session.user_id == test_user.id

    @pytest.mark.asyncio
    async def test_invalid_transitions_are_rejected(self, db_session, clock, test_user):
        store = SessionStore(db_session, clock=clock)
        created = await store.create("kindle-1", 300)
        session = await store.find_by_session_token(created.session_token)

        assert not await store.transition(session, SessionStatus.COMPLETED)
        assert not await store.transition(session, SessionStatus.PENDING)
        assert session.status == SessionStatus.PENDING

        assert await store.transition(session, SessionStatus.EXPIRED)
        assert not await store.transition(session, SessionStatus.AUTHORIZED, test_user.id)
        assert not await store.transition(session, SessionStatus.PENDING)
        assert session.status == SessionStatus.EXPIRED
        assert session.user_id is None

    @pytest.mark.asyncio
    async def test_completed_is_terminal(self, db_session, clock, test_user):
        store = SessionStore(db_session, clock=clock)
        created = await store.create("kindle-1", 300)
        session = await store.find_by_session_token(created.session_token)

        await store.transition(session, SessionStatus.AUTHORIZED, test_user.id)
        await store.transition(session, SessionStatus.COMPLETED)

        assert not await store.transition(session, SessionStatus.EXPIRED)
        assert session.status == SessionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_stale_reader_loses(self, db_session, clock, test_user):
        """A caller holding an out-of-date status cannot overwrite a newer one."""
        store = SessionStore(db_session, clock=clock)
        created = await store.create("kindle-1", 300)
        session = await store.find_by_session_token(created.session_token)
        assert session.status == SessionStatus.PENDING

        # Another writer expires the row behind this reader's back
        await db_session.execute(
            update(OAuthSession)
            .where(OAuthSession.id == session.id)
            .values(status=SessionStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        await db_session.commit()
        assert session.status == SessionStatus.PENDING

        assert not await store.transition(session, SessionStatus.AUTHORIZED, test_user.id)
        assert session.status == SessionStatus.EXPIRED
        assert session.user_id is None


class TestExpiry:
    """Tests for deadline checks and the sweep."""

    @pytest.mark.asyncio
    async def test_is_expired_follows_deadline(self, db_session, clock):
        store = SessionStore(db_session, clock=clock)
        created = await store.create("kindle-1", 300)
        session = await store.find_by_session_token(created.session_token)

        assert not store.is_expired(session)
        clock.advance(299)
        assert not store.is_expired(session)
        clock.advance(2)
        assert store.is_expired(session)
        # Stored status untouched by the check
        assert session.status == SessionStatus.PENDING

    @pytest.mark.asyncio
    async def test_sweep_expires_only_stale_live_sessions(self, db_session, clock, test_user):
        store = SessionStore(db_session, clock=clock)
        old_pending = await store.create("kindle-1", 60)
        old_authorized = await store.create("kindle-2", 60)
        old_completed = await store.create("kindle-3", 60)
        fresh = await store.create("kindle-4", 600)

        authorized = await store.find_by_session_token(old_authorized.session_token)
        await store.transition(authorized, SessionStatus.AUTHORIZED, test_user.id)
        completed = await store.find_by_session_token(old_completed.session_token)
        await store.transition(completed, SessionStatus.AUTHORIZED, test_user.id)
        await store.transition(completed, SessionStatus.COMPLETED)

        clock.advance(120)
        assert await store.sweep_expired() == 2

        statuses = {}
        for created in (old_pending, old_authorized, old_completed, fresh):
            session = await store.find_by_session_token(created.session_token)
            await db_session.refresh(session)
            statuses[session.device_id] = session.status

        assert statuses == {
            "kindle-1": SessionStatus.EXPIRED,
            "kindle-2": SessionStatus.EXPIRED,
            "kindle-3": SessionStatus.COMPLETED,
            "kindle-4": SessionStatus.PENDING,
        }

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(self, db_session, clock):
        store = SessionStore(db_session, clock=clock)
        await store.create("kindle-1", 60)
        clock.advance(61)

        assert await store.sweep_expired() == 1
        assert await store.sweep_expired() == 0
