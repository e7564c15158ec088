"""Shared test fixtures for the scheduling API tests.

Uses an in-memory SQLite async engine so tests run without PostgreSQL.
"""

import os

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base, get_db, get_session_factory
from app.main import app

# Import all models to ensure they're registered with Base.metadata
from app.models.appointment import Appointment, AppointmentStatus
from app.models.business import Business
from app.models.conversation import Conversation
from app.models.user import User
from app.services.auth import create_access_token


# One shared connection so every session sees the same in-memory database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    poolclass=StaticPool,
    connect_args={"check_same_thread": False},
)
TestSession = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # The next test runs on a fresh event loop; start it on a fresh connection
    await engine.dispose()


async def override_get_db():
    async with TestSession() as session:
        yield session


def override_get_session_factory():
    return TestSession


app.dependency_overrides[get_db] = override_get_db
app.dependency_overrides[get_session_factory] = override_get_session_factory


@pytest_asyncio.fixture
async def client():
    """Async HTTP test client.

    Background tasks finish before the transport hands back the response,
    so notification side effects can be asserted right after a request.
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def db():
    """Direct DB session for test setup/assertions."""
    async with TestSession() as session:
        yield session


@pytest.fixture
def fake_email():
    """Replace the shared email service with mocks that report success."""
    service = MagicMock()
    service.send_reschedule_approval = AsyncMock(return_value=True)
    service.send_appointment_cancellation = AsyncMock(return_value=True)
    service.send_reschedule_request = AsyncMock(return_value=True)
    with patch("app.services.notification_dispatcher.email_service", service):
        yield service


@pytest_asyncio.fixture
async def business(db):
    business = Business(
        name="Sharp Cuts",
        email="owner@sharpcuts.example.com",
        phone="+15550001111",
        is_active=True,
    )
    db.add(business)
    await db.commit()
    return business


@pytest_asyncio.fixture
async def customer(db):
    user = User(
        email="jane@example.com",
        full_name="Jane Doe",
        phone="+15552223333",
        is_active=True,
    )
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def conversation(db, business, customer):
    conversation = Conversation(customer_id=customer.id, business_id=business.id)
    db.add(conversation)
    await db.commit()
    return conversation


@pytest_asyncio.fixture
async def make_appointment(db, conversation):
    """Factory for appointments inside the shared conversation."""

    async def _make(
        status=AppointmentStatus.REQUESTED,
        preferred_date="2024-05-01",
        preferred_time="10:00",
        suggested_time=None,
        was_rescheduled=False,
    ):
        appointment = Appointment(
            conversation_id=conversation.id,
            customer_id=conversation.customer_id,
            business_id=conversation.business_id,
            customer_name="Jane Doe",
            customer_email="jane@example.com",
            customer_phone="+15552223333",
            service="Haircut",
            status=status,
            preferred_date=preferred_date,
            preferred_time=preferred_time,
            suggested_time=suggested_time,
            was_rescheduled=was_rescheduled,
        )
        db.add(appointment)
        await db.commit()
        return appointment

    return _make


@pytest.fixture
def customer_token(customer):
    return create_access_token({"sub": str(customer.id)})


@pytest.fixture
def business_token(business):
    return create_access_token({"type": "business", "businessId": str(business.id)})


@pytest.fixture
def session_factory():
    """Session factory the notification dispatcher opens its own sessions from."""
    return TestSession
