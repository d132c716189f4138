from collections.abc import AsyncGenerator, Callable
from datetime import date, timedelta
from typing import Any
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from labcenter.core.redis_client import get_redis_client
from labcenter.core.security import create_access_token
from labcenter.database import get_db
from labcenter.main import app
from labcenter.models import lab_tests, metadata, report_formats, users

# In-memory SQLite shared across the connections of one engine
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    poolclass=StaticPool,
    connect_args={"check_same_thread": False},
)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session on fresh tables."""
    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)


@pytest.fixture
def mock_redis() -> MagicMock:
    """Redis stand-in that always misses."""
    redis = MagicMock()
    redis.get.return_value = None
    redis.exists.return_value = 0
    return redis


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, mock_redis: MagicMock) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis_client] = lambda: mock_redis

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


async def _create_user(db_session: AsyncSession, role: str, full_name: str, **extra: Any) -> dict[str, Any]:
    user_id = uuid4()
    values = {
        "id": user_id,
        "firebase_uid": f"firebase_{role}_{user_id.hex[:8]}",
        "email": f"{role}.{user_id.hex[:6]}@example.com",
        "full_name": full_name,
        "contact": "9876543210",
        "role": role,
        "is_active": True,
        **extra,
    }
    await db_session.execute(insert(users).values(**values))
    await db_session.commit()
    return values


@pytest_asyncio.fixture
async def patient(db_session: AsyncSession) -> dict[str, Any]:
    return await _create_user(db_session, "patient", "Ravi Kumar", address="12 MG Road")


@pytest_asyncio.fixture
async def other_patient(db_session: AsyncSession) -> dict[str, Any]:
    return await _create_user(db_session, "patient", "Meera Shah")


@pytest_asyncio.fixture
async def staff(db_session: AsyncSession) -> dict[str, Any]:
    return await _create_user(db_session, "staff", "Asha Rao")


@pytest_asyncio.fixture
async def admin(db_session: AsyncSession) -> dict[str, Any]:
    return await _create_user(db_session, "admin", "Vikram Singh")


@pytest_asyncio.fixture
async def phlebo(db_session: AsyncSession) -> dict[str, Any]:
    return await _create_user(db_session, "phlebo", "Sunil Verma")


@pytest_asyncio.fixture
async def other_phlebo(db_session: AsyncSession) -> dict[str, Any]:
    return await _create_user(db_session, "phlebo", "Kiran Das")


def make_headers(user: dict[str, Any]) -> dict[str, str]:
    """Bearer headers for a user fixture."""
    token = create_access_token(
        data={"sub": str(user["id"]), "role": user["role"]},
        expires_delta=timedelta(minutes=30),
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def patient_headers(patient: dict[str, Any]) -> dict[str, str]:
    return make_headers(patient)


@pytest.fixture
def staff_headers(staff: dict[str, Any]) -> dict[str, str]:
    return make_headers(staff)


@pytest.fixture
def admin_headers(admin: dict[str, Any]) -> dict[str, str]:
    return make_headers(admin)


@pytest.fixture
def phlebo_headers(phlebo: dict[str, Any]) -> dict[str, str]:
    return make_headers(phlebo)


@pytest_asyncio.fixture
async def catalog(db_session: AsyncSession) -> dict[str, dict[str, Any]]:
    """Three tests; XRAY has no report format."""
    tests = [
        {"id": "CBC", "name": "Complete Blood Count", "cost": 350.0},
        {"id": "FBS", "name": "Fasting Blood Sugar", "cost": 120.5},
        {"id": "XRAY", "name": "Chest X-Ray", "cost": 500.0},
    ]
    await db_session.execute(insert(lab_tests), tests)
    await db_session.execute(
        insert(report_formats),
        [
            {
                "test_id": "CBC",
                "test_name": "Complete Blood Count",
                "parameters": [
                    {"name": "Hemoglobin", "unit": "g/dL", "normal_range": "13.5-17.5"},
                    {"name": "WBC Count", "unit": "cells/mcL", "normal_range": "4000-11000"},
                ],
            },
            {
                "test_id": "FBS",
                "test_name": "Fasting Blood Sugar",
                "parameters": [
                    {"name": "Glucose", "unit": "mg/dL", "normal_range": "70-100"},
                ],
            },
        ],
    )
    await db_session.commit()
    return {test["id"]: test for test in tests}


@pytest.fixture
def booking_data() -> dict[str, Any]:
    """A valid booking for tomorrow morning."""
    return {
        "test_ids": ["CBC", "FBS"],
        "date": (date.today() + timedelta(days=1)).isoformat(),
        "time_slot": "09:00",
        "address": "12 MG Road, Bengaluru",
        "contact": "+91 98765 43210",
        "description": "Fasting since 10pm",
    }


@pytest.fixture
def headers_for() -> Callable[[dict[str, Any]], dict[str, str]]:
    """Build bearer headers for any user fixture."""
    return make_headers
