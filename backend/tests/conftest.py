"""Shared fixtures: in-memory SQLite database and metric history factory."""
import os
from datetime import date, timedelta

# Must be set before refeed.database creates its engine
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from refeed.database import Base
from refeed.models import User
from refeed.schemas.metrics import DailyMetricRecord

STEADY_DAY = {
    "weight_kg": 70.0,
    "rhr_bpm": 55.0,
    "temp_c": 36.5,
    "hrv_ms": 70.0,
    "sleep_min": 420.0,
    "fatigue_1_5": 2.0,
    "training_load": 100.0,
    "calorie_intake_kcal": 2000.0,
    "energy_expenditure_kcal": 2400.0,
}


def build_history(days: int, start: str = "2025-01-01", **fields) -> list[DailyMetricRecord]:
    """
    Consecutive daily records starting at `start`.

    Field values may be constants or callables taking the day index.
    """
    first = date.fromisoformat(start)
    records = []
    for i in range(days):
        values = {
            name: value(i) if callable(value) else value
            for name, value in fields.items()
        }
        records.append(DailyMetricRecord(date=(first + timedelta(days=i)).isoformat(), **values))
    return records


@pytest.fixture
def make_history():
    return build_history


@pytest.fixture
def steady_history() -> list[DailyMetricRecord]:
    """28 identical days in a 400 kcal deficit."""
    return build_history(28, **STEADY_DAY)


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(engine):
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    user = User(auth_uid="user-test-0001", estimated_tdee=2200.0)
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user
