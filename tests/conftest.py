"""
Shared test fixtures.

Engine tests run against the in-memory adapters with a controllable
clock.  Repository tests use an in-memory SQLite database (via aiosqlite)
so they run without Docker / PostgreSQL / Redis.
"""

from datetime import date, datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from src.domain.engine import StatusEngine
from src.domain.entities import Driver, Trip, Vehicle
from src.domain.enums import DriverStatus, VehicleStatus
from src.domain.history import StatusHistoryService
from src.infrastructure.database import Base
from src.infrastructure import models  # noqa: F401  (registers tables)
from src.infrastructure.memory import InMemoryEntityStore, InMemoryHistoryLog

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


class FakeClock:
    """Callable clock; every read advances one millisecond."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(milliseconds=1)
        return current

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ── In-memory engine ──────────────────────────────────────────────────


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> InMemoryEntityStore:
    """One available truck, one on-duty driver, one draft trip (all id 1)."""
    s = InMemoryEntityStore()
    s.add_vehicle(
        Vehicle(id=1, status=VehicleStatus.AVAILABLE, max_capacity=20000, odometer=45000)
    )
    s.add_driver(
        Driver(id=1, status=DriverStatus.ON_DUTY, license_expiry=date(2027, 6, 30))
    )
    s.add_trip(Trip(id=1, vehicle_id=1, driver_id=1, cargo_weight=18000))
    return s


@pytest.fixture
def history(clock) -> InMemoryHistoryLog:
    return InMemoryHistoryLog(clock=clock)


@pytest.fixture
def engine(store, history, clock) -> StatusEngine:
    return StatusEngine(store, history, clock=clock, license_warning_days=7)


@pytest.fixture
def history_service(store, history, clock) -> StatusHistoryService:
    return StatusHistoryService(store, history, clock=clock)


@pytest.fixture
def events(engine) -> list:
    received = []
    engine.subscribe(received.append)
    return received


@pytest_asyncio.fixture
async def dispatched(engine, store):
    """The fixture trip after a successful dispatch."""
    await engine.dispatch_trip(1)
    return await store.get_trip(1)


# ── SQLite ────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Create tables on a fresh in-memory database, then drop everything."""
    test_engine = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

    await test_engine.dispose()

