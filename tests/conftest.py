"""Pytest configuration and fixtures"""

import os
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("APP_DEBUG", "false")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from disastershield.db import models  # noqa: F401
from disastershield.db.database import Base, get_db
from disastershield.db.models import CapacityStatus, Peril, Trade
from disastershield.main import app
from disastershield.schemas.claims import ClaimCreate, ContractorCreate
from disastershield.schemas.matching import DeliveryResult
from disastershield.services.repository import ClaimRepository
from disastershield.services.tokens import InvitationTokenService

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable clock for token expiry tests"""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeEmailService:
    """Records sends; recipients listed in ``fail_for`` fail delivery"""

    def __init__(self, fail_for: set[str] | None = None):
        self.fail_for = fail_for or set()
        self.sent: list[tuple[Any, str | None, dict[str, Any]]] = []

    async def send(self, kind, recipient, payload) -> DeliveryResult:
        self.sent.append((kind, recipient, payload))
        if recipient in self.fail_for:
            return DeliveryResult(channel="email", sent=False, error="SMTP connection refused")
        if not recipient:
            return DeliveryResult(channel="email", sent=False, skipped=True, error="No email address")
        return DeliveryResult(channel="email", sent=True)

    def recipients(self, kind) -> list[str | None]:
        return [recipient for sent_kind, recipient, _ in self.sent if sent_kind == kind]


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite so concurrent sessions see each other's commits"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'disastershield_test.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session"""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(test_db: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with overridden database dependency"""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def token_service(clock) -> InvitationTokenService:
    return InvitationTokenService(secret_key="test-secret-key", algorithm="HS256", clock=clock)


@pytest.fixture
def email_service() -> FakeEmailService:
    return FakeEmailService()


@pytest.fixture
def failing_email_service():
    """Build an email service whose deliveries to the given addresses fail"""

    def _build(*recipients: str) -> FakeEmailService:
        return FakeEmailService(fail_for=set(recipients))

    return _build


@pytest.fixture
def claim_data() -> dict[str, Any]:
    return {
        "user_id": uuid4(),
        "address": "123 Bayshore Blvd",
        "city": "Tampa",
        "state": "fl",
        "zip": "33606",
        "peril": Peril.WATER,
        "description": "Burst pipe flooded the kitchen and living room",
        "incident_at": datetime(2025, 2, 28, 8, 30, tzinfo=timezone.utc),
        "contact_name": "Pat Homeowner",
        "contact_phone": "+18135550100",
        "contact_email": "pat@example.com",
    }


@pytest_asyncio.fixture
async def make_claim(test_db: AsyncSession, claim_data):
    repository = ClaimRepository(test_db)

    async def _make_claim(**overrides):
        return await repository.create_claim(ClaimCreate(**{**claim_data, **overrides}))

    return _make_claim


@pytest_asyncio.fixture
async def make_contractor(test_db: AsyncSession):
    repository = ClaimRepository(test_db)
    counter = {"n": 0}

    async def _make_contractor(**overrides):
        counter["n"] += 1
        n = counter["n"]
        data = {
            "user_id": uuid4(),
            "company_name": f"Contractor {n}",
            "contact_name": f"Owner {n}",
            "email": f"contractor{n}@example.com",
            "service_areas": ["FL"],
            "trades": [Trade.WATER_MITIGATION],
            "capacity": CapacityStatus.ACTIVE,
        }
        data.update(overrides)
        return await repository.create_contractor(ContractorCreate(**data))

    return _make_contractor
