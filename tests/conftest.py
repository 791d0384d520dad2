"""
Shared fixtures.

Every test gets a fresh in-memory SQLite database (aiosqlite) with the full
schema and a seeded agency (25%), branch (15%) and package.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, custom_json_dumps
from app import models  # noqa: F401
from app.models.agency import Agency, Branch
from app.models.package import Package
from app.services.paytr_service import PayTRService
from app.services.sms_service import SMSService
from tests.factories import MERCHANT_ID, MERCHANT_KEY, MERCHANT_SALT, paytr_token_handler


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        json_serializer=custom_json_dumps,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine):
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    async with factory() as session:
        yield session


@pytest_asyncio.fixture
async def seed(db):
    """Agency 25%, branch 15%, one package. Returns plain ids."""
    agency = Agency(name="Test Agency", commission_rate=Decimal("25"), balance=Decimal("0"))
    db.add(agency)
    await db.flush()

    branch = Branch(
        agency_id=agency.id,
        name="Test Branch",
        commission_rate=Decimal("15"),
        balance=Decimal("0"),
    )
    package = Package(
        name="Roadside Assistance Gold",
        vehicle_type="AUTOMOBILE",
        price=Decimal("1000.00"),
    )
    db.add_all([branch, package])
    await db.commit()

    return SimpleNamespace(agency_id=agency.id, branch_id=branch.id, package_id=package.id)


@pytest.fixture
def paytr_calls():
    return []


@pytest.fixture
def paytr(paytr_calls):
    """Configured PayTR client answering every token request with success."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(paytr_token_handler(paytr_calls)))
    return PayTRService(
        merchant_id=MERCHANT_ID,
        merchant_key=MERCHANT_KEY,
        merchant_salt=MERCHANT_SALT,
        base_url="https://www.paytr.com",
        http_client=client,
    )


@pytest.fixture
def sms():
    service = AsyncMock(spec=SMSService)
    service.send_sale_confirmation_sms.return_value = True
    return service
