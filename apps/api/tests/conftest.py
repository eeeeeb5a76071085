"""Pytest configuration and fixtures."""

import os

# Must be set before pactlink_api reads its settings
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

from datetime import datetime, timedelta  # noqa: E402
from typing import Optional  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from pactlink_api.audit.log import AuditLog  # noqa: E402
from pactlink_api.db.base import Base  # noqa: E402
import pactlink_api.models  # noqa: E402, F401
from pactlink_api.notifications.dispatcher import NotificationDispatcher  # noqa: E402
from pactlink_api.otp.service import OTPService  # noqa: E402
from pactlink_api.providers import Clock, RandomSource  # noqa: E402
from pactlink_api.settings import Settings  # noqa: E402
from pactlink_api.signatures.events import EventPublisher, SignatureCompleted  # noqa: E402
from pactlink_api.signatures.workflow import SignatureWorkflow  # noqa: E402
from pactlink_api.tokens.store import TokenStore  # noqa: E402

# Use test database URL from environment or default to SQLite in-memory
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")

START = datetime(2026, 1, 5, 9, 0, 0)


class FrozenClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


class FixedRandom(RandomSource):
    """Real secrets and salts, but a known OTP code."""

    def __init__(self, code: str = "123456"):
        super().__init__(32)
        self.code = code

    def otp_code(self, digits: int = 6) -> str:
        return self.code


class RecordingDispatcher(NotificationDispatcher):
    def __init__(self):
        self.sent = []

    def send(self, recipient_hint: Optional[str], purpose: str, payload: dict) -> None:
        self.sent.append((recipient_hint, purpose, payload))


class FailingDispatcher(NotificationDispatcher):
    def send(self, recipient_hint: Optional[str], purpose: str, payload: dict) -> None:
        raise ConnectionError("broker unreachable")


class RecordingPublisher(EventPublisher):
    def __init__(self):
        self.events: list[SignatureCompleted] = []

    def publish(self, event: SignatureCompleted) -> None:
        self.events.append(event)


def make_engine(url: str):
    if url.startswith("sqlite"):
        if ":memory:" in url:
            return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
        return create_engine(url, connect_args={"check_same_thread": False, "timeout": 30})
    return create_engine(url)


@pytest.fixture(scope="function")
def db():
    """
    Create a test database session.

    Set TEST_DATABASE_URL to run against a real PostgreSQL instance.
    """
    engine = make_engine(TEST_DATABASE_URL)
    Base.metadata.create_all(engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def session_factory(tmp_path):
    """Session factory over a file-backed database, one connection per session.

    Used by the concurrency tests, where every thread needs its own
    connection to the same database.
    """
    engine = make_engine(f"sqlite:///{tmp_path / 'pactlink.db'}")
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def settings() -> Settings:
    return Settings(secret_key="test-secret-key", environment="test", otp_max_attempts=5)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def random_source() -> FixedRandom:
    return FixedRandom("123456")


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def audit(db: Session, clock: FrozenClock) -> AuditLog:
    return AuditLog(db, clock, correlation_id="test-correlation")


@pytest.fixture
def token_store(db, clock, random_source, dispatcher, audit, settings) -> TokenStore:
    return TokenStore(db, clock, random_source, dispatcher, audit, settings)


@pytest.fixture
def otp_service(db, clock, random_source, audit, settings) -> OTPService:
    return OTPService(db, clock, random_source, audit, settings)


@pytest.fixture
def workflow(db, token_store, otp_service, audit, clock, dispatcher, publisher) -> SignatureWorkflow:
    return SignatureWorkflow(db, token_store, otp_service, audit, clock, dispatcher, publisher)
