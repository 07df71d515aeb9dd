import os
from collections.abc import AsyncGenerator, Callable
from datetime import date, time, timedelta
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

# Load environment variables from .env file
load_dotenv()

# Settings are read at import time; provide what tests need
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./clinic_dev.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-tests-only")  # pragma: allowlist secret

from app.core.redis_client import get_cache_manager  # noqa: E402
from app.core.security import create_access_token  # noqa: E402
from app.database import build_async_url, get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models import clinics, doctors, metadata, patients  # noqa: E402
from app.schemas.appointments import Actor, ActorRole  # noqa: E402
from tests.helpers import next_weekday  # noqa: E402

# In-memory SQLite by default; set TEST_DATABASE_URL to run against PostgreSQL
TEST_DATABASE_URL = build_async_url(os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite://"))

if TEST_DATABASE_URL == build_async_url(os.environ["DATABASE_URL"]):
    raise RuntimeError("TEST_DATABASE_URL must differ from DATABASE_URL: tests drop all tables")


def _test_engine():
    if TEST_DATABASE_URL.startswith("sqlite"):
        return create_async_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(TEST_DATABASE_URL, poolclass=NullPool)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session on a fresh schema."""
    engine = _test_engine()
    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache_manager] = lambda: None

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def clinic_id(db_session: AsyncSession) -> UUID:
    """Create a test clinic."""
    clinic_id = uuid4()
    await db_session.execute(
        insert(clinics).values(id=clinic_id, name="Test Family Clinic", address="1 Main Street")
    )
    await db_session.commit()
    return clinic_id


@pytest_asyncio.fixture
async def doctor_id(db_session: AsyncSession, clinic_id: UUID) -> UUID:
    """Doctor working weekdays 09:00-11:00 in 30 minute slots."""
    doctor_id = uuid4()
    await db_session.execute(
        insert(doctors).values(
            id=doctor_id,
            clinic_id=clinic_id,
            full_name="Dr. Test Doctor",
            specialization="General Practice",
            available_days=["monday", "tuesday", "wednesday", "thursday", "friday"],
            start_time=time(9, 0),
            end_time=time(11, 0),
            slot_duration_minutes=30,
        )
    )
    await db_session.commit()
    return doctor_id


@pytest_asyncio.fixture
async def unscheduled_doctor_id(db_session: AsyncSession, clinic_id: UUID) -> UUID:
    """Doctor with no working calendar configured."""
    doctor_id = uuid4()
    await db_session.execute(
        insert(doctors).values(id=doctor_id, clinic_id=clinic_id, full_name="Dr. New Hire")
    )
    await db_session.commit()
    return doctor_id


async def _create_patient(db_session: AsyncSession, clinic_id: UUID, name: str) -> UUID:
    patient_id = uuid4()
    await db_session.execute(
        insert(patients).values(
            id=patient_id,
            clinic_id=clinic_id,
            full_name=name,
            phone_number="+1234567890",
        )
    )
    await db_session.commit()
    return patient_id


@pytest_asyncio.fixture
async def patient_id(db_session: AsyncSession, clinic_id: UUID) -> UUID:
    """Create a test patient."""
    return await _create_patient(db_session, clinic_id, "Test Patient")


@pytest_asyncio.fixture
async def other_patient_id(db_session: AsyncSession, clinic_id: UUID) -> UUID:
    """Create a second test patient."""
    return await _create_patient(db_session, clinic_id, "Other Patient")


@pytest.fixture
def monday() -> date:
    """Next Monday after today."""
    return next_weekday(0)


@pytest.fixture
def past_monday() -> date:
    """A Monday well in the past."""
    return next_weekday(0, after=date.today() - timedelta(days=28))


@pytest.fixture
def staff(clinic_id: UUID) -> Actor:
    return Actor(role=ActorRole.STAFF, id=uuid4(), clinic_id=clinic_id)


@pytest.fixture
def doctor(doctor_id: UUID, clinic_id: UUID) -> Actor:
    return Actor(role=ActorRole.DOCTOR, id=doctor_id, clinic_id=clinic_id)


@pytest.fixture
def patient(patient_id: UUID) -> Actor:
    return Actor(role=ActorRole.PATIENT, id=patient_id)


@pytest.fixture
def auth_headers() -> Callable[[Actor], dict]:
    """Build authentication headers for an actor."""

    def _headers(actor: Actor) -> dict:
        token_data = {"sub": str(actor.id), "role": actor.role.value}
        if actor.clinic_id is not None:
            token_data["clinic_id"] = str(actor.clinic_id)
        token = create_access_token(data=token_data, expires_delta=timedelta(minutes=30))
        return {"Authorization": f"Bearer {token}"}

    return _headers
