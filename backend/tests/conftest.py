"""
Test Configuration — Fixtures for async DB, stock pipeline, and test client.

Each test gets a fresh in-memory SQLite database. StaticPool keeps a single
connection so the schema and every session see the same database.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from api.deps import get_current_client, get_db
from api.main import app
from db.session import Base
from stock.aggregator import StockAggregator
from stock.cache import SnapshotCache
from stock.governor import RateGovernor
from stock.pipeline import StockPipeline

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

CLIENT_ID = "test-client"

# Fixed evaluation time for time-sensitive aggregation tests.
NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
async def test_engine():
    """Create a test database engine and build all tables."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def aggregator(session_factory):
    return StockAggregator(session_factory, query_timeout_seconds=5.0, clock=lambda: NOW)


@pytest.fixture
def pipeline(aggregator):
    return StockPipeline(
        governor=RateGovernor(limit=100, window_seconds=60.0),
        cache=SnapshotCache(),
        aggregator=aggregator,
        cache_ttl_seconds=300.0,
    )


@pytest.fixture
def mock_client():
    """Verified client identity as the auth dependency would return it."""
    return {"sub": CLIENT_ID, "scope": "stock:read stock:admin"}


@pytest.fixture
async def client(test_db, mock_client, pipeline):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    def override_get_current_client():
        return mock_client

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_client] = override_get_current_client
    app.state.stock_pipeline = pipeline

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.stock_pipeline = None


def at(year, month, day, hour=0, minute=0):
    """Naive UTC timestamp, as stored in the database."""
    return datetime(year, month, day, hour, minute)


@pytest.fixture
async def seeded_db(test_db):
    """Seed products and purchase orders covering the qualifying rules."""
    from db.models import Product, PurchaseOrder, PurchaseOrderLine

    water = Product(sku="098765qwerty", name="Sparkling Water", stock_quantity=15)
    milk = Product(sku="123456qwerty", name="Oat Milk", stock_quantity=0)
    beans = Product(sku="BEANS-01", name="Coffee Beans", stock_quantity=15)
    tea = Product(sku="TEA-01", name="Green Tea", stock_quantity=40)
    test_db.add_all([water, milk, beans, tea])
    await test_db.flush()

    def po(status, expected, *products):
        order = PurchaseOrder(status=status, created_at=at(2025, 2, 1), expected_delivery_at=expected)
        for product in products:
            order.lines.append(PurchaseOrderLine(product_id=product.product_id, quantity=12, subtotal=Decimal("30.00")))
        test_db.add(order)
        return order

    # Milk: one confirmed future PO.
    po("confirmed", at(2025, 3, 15), milk)
    # Beans: several qualifying, the earliest wins; non-qualifying ones ignored.
    po("pending_delivery", at(2025, 4, 2), beans)
    po("confirmed", at(2025, 3, 20), beans, tea)
    po("created", at(2025, 3, 5), beans)
    po("cancelled", at(2025, 3, 3), beans)
    po("done", at(2025, 3, 2), beans)
    # Tea: a qualifying PO already in the past does not count.
    po("confirmed", at(2025, 2, 20), tea)
    # Water: only past or non-qualifying orders.
    po("pending_delivery", at(2025, 2, 28), water)
    po("created", at(2025, 3, 10), water)

    await test_db.commit()
    return {"water": water, "milk": milk, "beans": beans, "tea": tea}
