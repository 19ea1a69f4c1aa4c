"""
Test configuration and fixtures for the blood donor matching service.
Provides test database setup, authentication helpers, and data fixtures.
"""

import os
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import AsyncGenerator, Optional
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Add the project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Test database configuration
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Override environment variables for testing
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-jwt-tokens")
os.environ.setdefault("ALGORITHM", "HS256")
os.environ.setdefault("LOG_TO_FILE", "false")

from app.main import app
from app.db.base import Base, utcnow
from app.dependencies import get_db
from app.models.user_model import User
from app.services.notification_service import NotificationDispatcher
from app.services.notification_sse import ConnectionManager
from app.utils.security import TokenManager

# Hospital in central Accra; every test location is offset from here
ACCRA_LONGITUDE = -0.1870
ACCRA_LATITUDE = 5.6037

KM_PER_DEGREE_LAT = 110.574


@pytest.fixture
async def engine():
    """Fresh in-memory database per test."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,  # Set to True for SQL debugging
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
def connection_manager() -> ConnectionManager:
    return ConnectionManager(queue_size=10)


@pytest.fixture
def notifier(connection_manager: ConnectionManager) -> NotificationDispatcher:
    return NotificationDispatcher(connection_manager)


@pytest.fixture
async def client(db_session: AsyncSession, notifier: NotificationDispatcher):
    """Async client with the database and notifier wired to the test fixtures."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    # The lifespan does not run under ASGITransport
    app.state.notifier = notifier
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# --- Data Factories ---


def north_of(km: float, longitude: float = ACCRA_LONGITUDE, latitude: float = ACCRA_LATITUDE):
    """(longitude, latitude) roughly ``km`` north of a point"""
    return longitude, latitude + km / KM_PER_DEGREE_LAT


class TestDataFactory:
    """Factory for creating test users and request payloads."""

    @staticmethod
    def unique_email(prefix: str = "user") -> str:
        return f"{prefix}_{uuid4().hex[:8]}@bloodline.test"

    @staticmethod
    async def create_user(
        db: AsyncSession,
        blood_group: str = "O+",
        km_north: float = 0.0,
        is_donor: bool = True,
        last_donation: Optional[datetime] = None,
        name: Optional[str] = None,
    ) -> User:
        longitude, latitude = north_of(km_north)
        user = User(
            name=name or f"User {uuid4().hex[:6]}",
            email=TestDataFactory.unique_email(),
            phone="+233244000000",
            blood_group=blood_group,
            longitude=longitude,
            latitude=latitude,
            address="Accra",
            is_donor=is_donor,
            last_donation=last_donation,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user

    @staticmethod
    def blood_request_payload(
        blood_group: str = "O-",
        units: int = 1,
        urgency: str = "medium",
        km_north: float = 0.0,
    ) -> dict:
        longitude, latitude = north_of(km_north)
        return {
            "patient": {"name": "Ama Mensah", "age": 34, "gender": "female"},
            "blood_group": blood_group,
            "units": units,
            "urgency": urgency,
            "hospital": {
                "name": "Korle Bu Teaching Hospital",
                "location": {
                    "type": "Point",
                    "coordinates": [longitude, latitude],
                    "address": "Guggisberg Ave, Accra",
                },
            },
            "reason": "Post-partum haemorrhage",
            "additional_notes": "",
        }

    @staticmethod
    def days_ago(days: int) -> datetime:
        return utcnow() - timedelta(days=days)


@pytest.fixture
def factory():
    return TestDataFactory


@pytest.fixture
async def requester(db_session: AsyncSession) -> User:
    return await TestDataFactory.create_user(
        db_session, blood_group="O-", is_donor=False, name="Requester"
    )


# --- Authentication Helpers ---


def auth_headers(user: User) -> dict:
    token = TokenManager.create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth():
    """Callable building bearer headers for a user"""
    return auth_headers


@pytest.fixture
def locate():
    """Callable giving the (longitude, latitude) ``km`` north of the test hospital"""
    return north_of
