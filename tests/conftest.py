"""Shared fixtures: file-backed SQLite store, fixed clock, no Redis."""

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.intelligence.completion import CompletionChain
from app.core.records.store import SQLRecordStore
from app.core.records.types import TherapistRecord
from app.infra.database import init_db
from app.infra.redis import KeyedLock

# 10:00 on Monday 1 December 2025 in Asia/Kolkata
FIXED_NOW = datetime(2025, 12, 1, 4, 30, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def no_redis():
    """Locks fall back to in-process asyncio locks."""
    with patch("app.infra.redis.get_redis", AsyncMock(return_value=None)):
        yield


@pytest.fixture
async def engine(tmp_path):
    """Fresh database per test. NullPool gives every session its own connection."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
def store(session_factory):
    return SQLRecordStore(session_factory)


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def locks():
    """Per-test lock registry (asyncio locks bind to one event loop)."""
    return KeyedLock(f"test-{uuid.uuid4().hex[:8]}")


@pytest.fixture
def offline_completion():
    """Completion chain whose model never answers."""
    chain = MagicMock(spec=CompletionChain)
    chain.complete = AsyncMock(return_value=None)
    return chain


@pytest.fixture
async def therapists(store):
    """Three active therapists and one inactive one."""
    anita = await store.add_therapist(TherapistRecord(
        id=str(uuid.uuid4()),
        name="Dr. Anita Rao",
        bio="Cognitive behavioural therapy for anxiety and low mood.",
        specialties=["anxiety", "depression"],
        accepted_insurance=["Aetna", "Star Health"],
    ))
    brian = await store.add_therapist(TherapistRecord(
        id=str(uuid.uuid4()),
        name="Dr. Brian Chen",
        bio="Trauma-informed care and bereavement support.",
        specialties=["trauma", "grief"],
        accepted_insurance=["Cigna", "Self-pay"],
    ))
    carla = await store.add_therapist(TherapistRecord(
        id=str(uuid.uuid4()),
        name="Dr. Carla Mendes",
        bio="Couples work and stress management.",
        specialties=["relationship issues", "stress"],
        accepted_insurance=["Aetna", "Blue Cross"],
        google_refresh_token="refresh-carla",
        google_calendar_id="carla@example.com",
    ))
    retired = await store.add_therapist(TherapistRecord(
        id=str(uuid.uuid4()),
        name="Dr. Dana Retired",
        specialties=["anxiety"],
        accepted_insurance=["Aetna"],
        is_active=False,
    ))
    return {"anita": anita, "brian": brian, "carla": carla, "retired": retired}
