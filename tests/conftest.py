"""
Shared test fixtures and fakes.
"""

from __future__ import annotations

from datetime import datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo

import pytest

from tap_track.cache import LocalCache
from tap_track.clock import Clock
from tap_track.engine import SessionEngine
from tap_track.errors import ActiveSessionConflictError, RemoteUnavailableError, SessionNotFoundError
from tap_track.models import Identity, Session
from tap_track.remote import RemoteStore

UTC = ZoneInfo("UTC")


class FakeClock(Clock):
    def __init__(self, now: datetime, tz: tzinfo = UTC) -> None:
        super().__init__(tz)
        self._now = now

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now

    def advance(self, seconds: float) -> None:
        self._now = self._now + timedelta(seconds=seconds)


class FakeRemote(RemoteStore):
    """In-memory store that can be switched off to simulate outages."""

    def __init__(self) -> None:
        self.rows: dict[str, Session] = {}
        self.available = True
        self.calls: list[tuple[str, str]] = []

    def _check(self) -> None:
        if not self.available:
            raise RemoteUnavailableError("remote is down")

    async def insert_session(self, session: Session, *, require_no_active: bool = False) -> Session:
        self._check()
        self.calls.append(("insert", session.id))
        if session.id in self.rows:
            return self.rows[session.id]
        if require_no_active and session.is_active:
            for row in self.rows.values():
                if row.user_id == session.user_id and row.is_active:
                    raise ActiveSessionConflictError(session.user_id, row.id)
        self.rows[session.id] = session
        return session

    async def update_session(self, session: Session) -> Session:
        self._check()
        self.calls.append(("update", session.id))
        if session.id not in self.rows:
            raise SessionNotFoundError(session.id)
        self.rows[session.id] = session
        return session

    async def fetch_sessions(self, user_id: str) -> list[Session]:
        self._check()
        return [row for row in self.rows.values() if row.user_id == user_id]

    async def ping(self) -> bool:
        return self.available


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 1, 1, 10, 0, 0, tzinfo=UTC))


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def cache():
    local = LocalCache(":memory:")
    yield local
    local.close()


@pytest.fixture
def identity() -> Identity:
    return Identity(user_id="user-1", email="user@example.com")


@pytest.fixture
def engine(identity, remote, cache, clock) -> SessionEngine:
    return SessionEngine(identity, remote, cache, clock=clock)
