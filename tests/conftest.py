from collections.abc import AsyncGenerator
from datetime import datetime, timedelta
from typing import Any
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.redis_client import get_redis_client
from app.core.security import create_access_token
from app.database import get_db
from app.dependencies import get_file_storage
from app.main import app
from app.models import metadata
from app.services.appointment_service import AppointmentService
from app.services.file_storage import FileStorage
from app.services.patient_service import PatientService

# In-memory SQLite shared by every session of a test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session on a fresh schema."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await test_engine.dispose()


@pytest.fixture
def redis_store() -> dict[str, Any]:
    """Backing dict of the fake Redis client."""
    return {}


@pytest.fixture
def mock_redis(redis_store: dict[str, Any]) -> MagicMock:
    """Redis client mock that keeps values in ``redis_store``."""
    mock = MagicMock()
    mock.setex.side_effect = lambda key, ttl, value: redis_store.__setitem__(key, value)
    mock.get.side_effect = redis_store.get
    mock.delete.side_effect = lambda key: redis_store.pop(key, None)
    mock.ping.return_value = True
    return mock


@pytest.fixture
def storage(tmp_path) -> FileStorage:
    """Upload storage in a temporary directory."""
    return FileStorage(tmp_path / "uploads")


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    mock_redis: MagicMock,
    storage: FileStorage,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis_client] = lambda: mock_redis
    app.dependency_overrides[get_file_storage] = lambda: storage

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def today_at(hour: int = 9) -> datetime:
    """Naive datetime today at ``hour``."""
    return datetime.now().replace(hour=hour, minute=0, second=0, microsecond=0)


@pytest.fixture
def sample_record() -> dict[str, Any]:
    """A normalized spreadsheet record for an appointment today."""
    return {
        "encounterId": "ENC-1001",
        "patientAcctNo": "ACCT-1",
        "appointmentDate": today_at(),
        "appointmentStartTime": "09:00 AM",
        "appointmentProviderName": "Dr. Jane Smith",
        "appointmentFacilityName": "Main Street Clinic",
        "visitType": "Follow Up",
        "visitStatus": "Scheduled",
        "patientName": "Doe, John",
        "patientFirstName": "John",
        "patientLastName": "Doe",
        "patientDOB": datetime(1980, 5, 17),
        "patientCellPhone": "(555) 123-4567",
        "patientEmail": "John.Doe@Example.com",
        "patientCity": "Springfield",
        "source": "tabular-import",
        "fileName": "schedule.xlsx",
        "fileId": "file-1",
    }


@pytest_asyncio.fixture
async def test_appointment(db_session: AsyncSession, sample_record: dict[str, Any]):
    """Appointment stored for today, with its patient reconciled."""
    appointment = await AppointmentService(db_session).create_appointment(sample_record)
    await PatientService(db_session).reconcile_from_appointment(
        sample_record, encounter_id=appointment.encounter_id
    )
    return appointment


@pytest_asyncio.fixture
async def test_patient(db_session: AsyncSession, test_appointment):
    """Patient owning ``test_appointment``."""
    return await PatientService(db_session).get_by_acct_no(test_appointment.patient_acct_no)


@pytest.fixture
def auth_headers(test_patient) -> dict:
    """Create authentication headers for the test patient."""
    token = create_access_token(test_patient.acct_no, expires_delta=timedelta(minutes=30))
    return {"Authorization": f"Bearer {token}"}
