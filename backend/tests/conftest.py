"""Pytest configuration and shared fixtures."""

import os

# Settings and the global engine are built at import time
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_ENABLED", "false")

import uuid
from collections.abc import Generator
from datetime import UTC, datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

import qselect.models  # noqa: F401
from qselect.db.base import Base
from qselect.db.engine import engine
from qselect.db.session import SessionLocal, get_db
from qselect.selection.reservations import (
    InMemoryClaimStore,
    ReservationCoordinator,
    get_coordinator,
)


class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="session", autouse=True)
def _schema() -> Generator[None, None, None]:
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Session on the in-memory database; every table is emptied afterwards."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        with engine.begin() as connection:
            for table in reversed(Base.metadata.sorted_tables):
                connection.execute(table.delete())


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def claim_store(clock: FakeClock) -> InMemoryClaimStore:
    return InMemoryClaimStore(clock=clock)


@pytest.fixture
def coordinator(claim_store: InMemoryClaimStore) -> ReservationCoordinator:
    return ReservationCoordinator(
        claim_store,
        ttl_seconds=3.0,
        bucket_seconds=60,
        max_attempts=3,
        backoff_seconds=0.0,
        sleep=lambda _: None,
    )


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


@pytest.fixture
def org_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def client(db: Session, coordinator: ReservationCoordinator) -> Generator[TestClient, None, None]:
    """API client sharing the test session and coordinator."""
    from qselect.main import app

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
