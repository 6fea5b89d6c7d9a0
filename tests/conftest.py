"""
Shared pytest fixtures: an in-memory SQLite database per test, a fixed clock,
and recording/failing fakes for the email, meeting, calendar and Redis edges.
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from unittest.mock import patch
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio

# Add the project root to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Test database configuration (must be set before mindfulcare.db.session is imported)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ.setdefault("APP_ENV", "testing")

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine, AsyncSession  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from mindfulcare.core.config import Settings  # noqa: E402
from mindfulcare.core.errors import MeetingProvisioningError, NotificationDeliveryError  # noqa: E402
from mindfulcare.db.base import init_db  # noqa: E402
from mindfulcare.services.booking import BookingService  # noqa: E402
from mindfulcare.services.email_providers import EmailProvider  # noqa: E402
from mindfulcare.services.meetings import (  # noqa: E402
    GenericMeetingAdapter,
    MeetingAdapter,
    MeetingProvisioner,
    MockMeetingAdapter,
    PLATFORM_GOOGLE_MEET,
    PLATFORM_TEAMS,
    PLATFORM_ZOOM,
)
from mindfulcare.services.notifications import NotificationDispatcher  # noqa: E402
from mindfulcare.services.reminders import DEFAULT_OFFSETS, ReminderScheduler  # noqa: E402

UTC = timezone.utc

# "Now" for every test: Friday 2025-05-30 09:00 UTC
NOW = datetime(2025, 5, 30, 9, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def setup_test_environment():
    """Keep every external integration off while tests run"""
    test_env = {
        'APP_ENV': 'testing',
        'DATABASE_URL': TEST_DATABASE_URL,
        'EMAIL_PROVIDER': 'mock',
        'MEETING_MODE': 'mock',
        'GOOGLE_CALENDAR_ENABLED': 'false',
        'REDIS_URL': '',
    }
    with patch.dict(os.environ, test_env):
        yield


# ---------- database ----------

@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(bind=eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ---------- fakes ----------

class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingEmailProvider(EmailProvider):
    name = "recording"

    def __init__(self):
        self.sent = []

    async def send(self, to, subject, html_body):
        self.sent.append({"to": to, "subject": subject, "body": html_body})


class FailingEmailProvider(EmailProvider):
    name = "failing"

    def __init__(self, message="mailbox unavailable"):
        self.message = message
        self.attempts = 0

    async def send(self, to, subject, html_body):
        self.attempts += 1
        raise NotificationDeliveryError(self.name, self.message)


class FailingMeetingAdapter(MeetingAdapter):
    name = "failing"

    def __init__(self, exc=None):
        self.exc = exc
        self.calls = 0

    async def provision(self, appointment_id, platform, host_identity, guest_identity, **kwargs):
        self.calls += 1
        raise self.exc or MeetingProvisioningError(platform, "provider unavailable")


class FakeCalendar:
    """Stands in for CalendarMirror; records calls and hands out sequential event ids."""

    def __init__(self, enabled=True):
        self.enabled = enabled
        self.created = []
        self.updated = []
        self.deleted = []

    async def create_event(self, **kwargs):
        if not self.enabled:
            return None
        self.created.append(kwargs)
        return {"event_id": f"evt-{len(self.created)}", "event_link": "https://calendar.test/evt"}

    async def update_event(self, event_id, **kwargs):
        self.updated.append((event_id, kwargs))
        return {"event_id": event_id}

    async def delete_event(self, event_id):
        self.deleted.append(event_id)
        return True


class FakeRedis:
    """Async subset of the redis client used by SnapshotCache."""

    def __init__(self):
        self.store = {}
        self.expiry = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value
        self.expiry[key] = ex
        return True

    async def aclose(self):
        pass


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def email_provider():
    return RecordingEmailProvider()


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def mock_adapter():
    return MockMeetingAdapter("https://meet.test")


def make_provisioner(adapter):
    return MeetingProvisioner(
        {PLATFORM_ZOOM: adapter, PLATFORM_GOOGLE_MEET: adapter, PLATFORM_TEAMS: adapter},
        GenericMeetingAdapter("https://meet.test"),
        timeout_seconds=1.0,
    )


def make_settings(**overrides):
    values = dict(
        DATABASE_URL=TEST_DATABASE_URL,
        APP_ENV="testing",
        APP_BASE_URL="https://app.test",
        REMINDER_OFFSETS="1d,1h",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def make_service(clock, email_provider, calendar, mock_adapter):
    """Build a BookingService with fakes; keyword arguments override settings or fakes."""

    def _make(provider=None, adapter=None, **setting_overrides):
        settings = make_settings(**setting_overrides)
        return BookingService(
            settings,
            provisioner=make_provisioner(adapter or mock_adapter),
            dispatcher=NotificationDispatcher(provider or email_provider, timeout_seconds=1.0,
                                              app_base_url=settings.APP_BASE_URL),
            scheduler=ReminderScheduler(DEFAULT_OFFSETS, tz=ZoneInfo(settings.APP_TIMEZONE), clock=clock,
                                        app_base_url=settings.APP_BASE_URL),
            calendar=calendar,
        )

    return _make


@pytest.fixture
def booking_service(make_service):
    return make_service()


@pytest.fixture
def booking_payload():
    """Scenario A request"""
    return {
        "user_id": "u1",
        "practitioner_id": 1,
        "practitioner_name": "Dr. X",
        "date": "2025-06-01",
        "time": "10:00 AM",
        "session_type": "therapy",
        "user_email": "a@b.com",
        "user_name": "Alice",
    }


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "unit: Pure unit tests with no database")
    config.addinivalue_line("markers", "integration: Tests that run against the SQLite test database")
    config.addinivalue_line("markers", "slow: Long-running tests")
