"""Shared test fixtures and configuration."""
import os
from datetime import datetime, timedelta
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("MEETING_PROVIDER", "in_memory")
os.environ.setdefault("AUTH_JWT_SECRET", "test-secret-key-with-enough-length-1234")
os.environ.setdefault("WEBHOOK_SECRET", "test-webhook-secret")

from dialbridge.main import app
from dialbridge.api.auth import create_access_token
from dialbridge.client.orchestrator import CallOrchestrator
from dialbridge.client.platform import Dialer, ReachabilityProbe, TokenIdentity
from dialbridge.client.registry_client import LocalRegistryClient
from dialbridge.core.dependencies import get_history_recorder, get_session_registry
from dialbridge.core.errors import (
    HistoryUnavailableError,
    MeetingNotFoundError,
    ProviderUnavailableError,
)
from dialbridge.db.models import Base
from dialbridge.services.call_session.models import CallLogEntry, CallType
from dialbridge.services.call_session.registry import SessionRegistry
from dialbridge.services.meetings.base import AttendeeInfo, MeetingInfo
from dialbridge.services.meetings.in_memory import InMemoryMeetingProvider
from dialbridge.services.persistence.history import HistoryRecorder, HistorySink


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeClock:
    """Controllable clock for duration tests."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FlakyMeetingProvider(InMemoryMeetingProvider):
    """In-memory provider that fails a configurable number of times."""

    def __init__(self, meeting_failures: int = 0, attendee_failures: int = 0, delete_failures: int = 0):
        super().__init__()
        self.meeting_failures = meeting_failures
        self.attendee_failures = attendee_failures
        self.delete_failures = delete_failures
        self.create_meeting_calls = 0
        self.delete_calls: List[str] = []

    async def create_meeting(self, call_id: str, user_id: str) -> MeetingInfo:
        self.create_meeting_calls += 1
        if self.meeting_failures > 0:
            self.meeting_failures -= 1
            raise ProviderUnavailableError("provider down")
        return await super().create_meeting(call_id, user_id)

    async def create_attendee(
        self, meeting_id: str, user_id: str, call_type: CallType = CallType.VOICE
    ) -> AttendeeInfo:
        if self.attendee_failures > 0:
            self.attendee_failures -= 1
            raise MeetingNotFoundError("meeting vanished")
        return await super().create_attendee(meeting_id, user_id, call_type)

    async def delete_meeting(self, meeting_id: str) -> None:
        self.delete_calls.append(meeting_id)
        if self.delete_failures > 0:
            self.delete_failures -= 1
            raise ProviderUnavailableError("provider down")
        await super().delete_meeting(meeting_id)


class InMemoryHistory(HistorySink):
    """History sink kept in a list."""

    def __init__(self):
        self.entries: List[CallLogEntry] = []
        self.available = True

    async def append(self, entry: CallLogEntry) -> CallLogEntry:
        if not self.available:
            raise HistoryUnavailableError("history store offline")
        self.entries.append(entry)
        return entry

    async def query(self, user_id: str, limit: Optional[int] = None) -> List[CallLogEntry]:
        if not self.available:
            raise HistoryUnavailableError("history store offline")
        entries = [e for e in self.entries if e.user_id == user_id]
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries[: limit or 50]


class FakeReachability(ReachabilityProbe):
    def __init__(self, reachable: bool = True):
        self.reachable = reachable
        self.checks = 0

    async def is_reachable(self) -> bool:
        self.checks += 1
        return self.reachable


class FakeDialer(Dialer):
    def __init__(self, supported: bool = True):
        self.supported = supported
        self.dialed: List[str] = []

    async def can_dial(self, url: str) -> bool:
        return self.supported

    def dial(self, url: str) -> None:
        self.dialed.append(url)


@pytest.fixture
async def test_db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def history_recorder(test_db_engine):
    """History recorder on the test database."""
    session_factory = async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return HistoryRecorder(session_factory)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def history():
    return InMemoryHistory()


@pytest.fixture
def meeting_provider():
    return FlakyMeetingProvider()


@pytest.fixture
def registry(meeting_provider, history, clock):
    """Registry with fast retries so failure tests stay quick."""
    return SessionRegistry(
        meeting_provider,
        history,
        provider_timeout=1.0,
        max_attempts=3,
        initial_backoff_ms=0,
        max_backoff_ms=0,
        clock=clock,
    )


@pytest.fixture
def identity():
    return TokenIdentity("user-a", create_access_token("user-a"))


@pytest.fixture
def reachability():
    return FakeReachability()


@pytest.fixture
def dialer():
    return FakeDialer()


@pytest.fixture
def orchestrator(registry, history, reachability, dialer, identity, clock):
    """Orchestrator wired to an in-process registry."""
    return CallOrchestrator(
        registry=LocalRegistryClient(registry),
        history=history,
        reachability=reachability,
        dialer=dialer,
        identity=identity,
        clock=clock,
    )


@pytest.fixture
def override_dependencies(registry, history):
    """Point the app at the test registry and history."""
    app.dependency_overrides[get_session_registry] = lambda: registry
    app.dependency_overrides[get_history_recorder] = lambda: history
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def test_client(override_dependencies):
    """Create FastAPI test client with overrides."""
    return TestClient(app)


@pytest.fixture
def make_headers():
    """Build an Authorization header for a user."""
    def _make_headers(user_id: str = "user-a") -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}
    return _make_headers


@pytest.fixture
def headers(make_headers):
    return make_headers("user-a")


@pytest.fixture
def webhook_headers():
    """Shared-secret header the provider sends with notifications."""
    return {"X-Webhook-Secret": os.environ["WEBHOOK_SECRET"]}
