"""
Test Configuration: Fixtures for async DB, test client, and seed data.

Each test gets its own in-memory SQLite database. App code commits freely;
nothing leaks between tests because the engine is thrown away afterwards.
"""

import uuid
from datetime import date, datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from api.deps import get_db
from api.main import app
from db.session import Base

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

CUSTOMER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")


def tomorrow_at(hour: int, minute: int = 0) -> datetime:
    """Naive UTC instant tomorrow; far enough ahead that no schedule starts in the past."""
    from db.models import utcnow

    day = utcnow().date() + timedelta(days=1)
    return datetime(day.year, day.month, day.day, hour, minute)


@pytest.fixture
async def test_engine():
    """Fresh in-memory database with all tables."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    session = AsyncSession(bind=test_engine, expire_on_commit=False)
    yield session
    await session.close()


@pytest.fixture
async def client(test_db):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def seeded_db(test_db):
    """A licensed customer, an F-18 FDG product it may order, and tomorrow's 120-minute window."""
    from db.models import CapacityWindow, Customer, CustomerProduct, Product

    customer = Customer(
        customer_id=CUSTOMER_ID,
        name="Riverside Imaging",
        email="orders@riverside-imaging.test",
        travel_time_minutes=60,
        license_expiry_date=date.today() + timedelta(days=365),
        status="active",
    )
    product = Product(
        code="FDG",
        name="F-18 FDG",
        half_life_minutes=110,
        shelf_life_minutes=480,
        synthesis_time_minutes=90,
        qc_time_minutes=30,
        packaging_time_minutes=15,
        overage_percent=10,
        dispensing_minutes_per_dose=20,
    )
    unlicensed = Product(
        code="GA68",
        name="Ga-68 DOTATATE",
        half_life_minutes=68,
        shelf_life_minutes=240,
        synthesis_time_minutes=45,
        qc_time_minutes=20,
        packaging_time_minutes=10,
    )
    test_db.add_all([customer, product, unlicensed])
    await test_db.flush()

    test_db.add(CustomerProduct(customer_id=customer.customer_id, product_id=product.product_id))

    window = CapacityWindow(
        name="Morning run",
        window_date=tomorrow_at(6).date(),
        start_time=tomorrow_at(6),
        end_time=tomorrow_at(10),
        capacity_minutes=120,
    )
    test_db.add(window)
    await test_db.commit()

    return {
        "customer": customer,
        "product": product,
        "unlicensed_product": unlicensed,
        "window": window,
    }
