"""
Pytest configuration and fixtures
"""
import os
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import Session

# Settings are read on first import; point them at an in-memory database
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("LOG_FILE_ENABLED", "false")
os.environ.setdefault("ENABLE_TRACING", "false")

import explore.models  # noqa: E402,F401
from explore.core.database import Base, configure_engine, get_db, get_session_local  # noqa: E402
from explore.services.decision_service import DecisionService  # noqa: E402
from explore.services.decision_store import DecisionStore  # noqa: E402

START = datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Returns a strictly increasing UTC time on every call"""

    def __init__(self, start: datetime = START, step_seconds: float = 1.0):
        self.now = start
        self.step = timedelta(seconds=step_seconds)

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture(scope="session")
def engine():
    """In-memory SQLite engine shared by the whole test session"""
    return configure_engine("sqlite://")


@pytest.fixture(scope="function")
def db(engine) -> Session:
    """Create a database session with a fresh schema for each test"""
    Base.metadata.create_all(bind=engine)
    session = get_session_local()()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(db) -> DecisionStore:
    return DecisionStore(db)


@pytest.fixture
def service(db, clock) -> DecisionService:
    return DecisionService(db, page_size=10, clock=clock, timeout_seconds=5.0)


@pytest.fixture(scope="function")
def client(db, clock):
    """Create test client with database dependency override"""
    from fastapi.testclient import TestClient

    from explore.api.routes.explore import get_decision_service
    from explore.main import app

    def override_get_db():
        try:
            yield db
        finally:
            pass

    def override_get_decision_service():
        return DecisionService(db, page_size=10, clock=clock, timeout_seconds=5.0)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_decision_service] = override_get_decision_service
    test_client = TestClient(app)
    yield test_client
    app.dependency_overrides.clear()
