"""
Test Configuration — Fixtures for a file-backed SQLite DB, the workflow
runtime, seeded inventory and an API test client.

Each test gets its own database file under tmp_path and its own
in-memory event bus, so published messages can be asserted directly.
"""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from core.config import Settings
from db.models import Store, StoreInventory, Warehouse, WarehouseInventory
from integrations.memory_bus import InMemoryEventBus
from replenishment.runtime import build_runtime

STORE_ID = "ST-001"
WAREHOUSE_ID = "WH-CENTRAL-001"
PRODUCT_ID = "PRD-001"
EMPTY_PRODUCT_ID = "PRD-002"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        app_env="test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'sentry.db'}",
        database_auto_create=True,
        event_bus="memory",
        notification_timeout_seconds=0.5,
        reservation_retry_attempts=10,
    )


@pytest.fixture
def bus():
    return InMemoryEventBus()


@pytest.fixture
async def runtime(settings, bus):
    rt = await build_runtime(settings, bus=bus)
    yield rt
    await rt.close()


@pytest.fixture
def workflow(runtime):
    return runtime.workflow


@pytest.fixture
def session_factory(runtime):
    return runtime.session_factory


@pytest.fixture
async def seeded(session_factory):
    """
    One store and the central warehouse:
      PRD-001  store stock 5 (threshold 10), warehouse 100 available
      PRD-002  store stock 0 (threshold 4),  warehouse empty
    """
    async with session_factory() as db:
        db.add_all(
            [
                Store(store_id=STORE_ID, store_name="Downtown Store", city="Minneapolis", state="MN"),
                Warehouse(warehouse_id=WAREHOUSE_ID, warehouse_name="Central DC", capacity=50000),
                StoreInventory(
                    store_id=STORE_ID,
                    product_id=PRODUCT_ID,
                    product_name="Organic Milk 1L",
                    product_category="Dairy",
                    current_stock=5,
                    reorder_threshold=10,
                    max_stock_level=60,
                    unit_cost=1.25,
                ),
                StoreInventory(
                    store_id=STORE_ID,
                    product_id=EMPTY_PRODUCT_ID,
                    product_name="Sourdough Loaf",
                    product_category="Bakery",
                    current_stock=0,
                    reorder_threshold=4,
                    max_stock_level=30,
                    unit_cost=2.10,
                ),
                WarehouseInventory(
                    warehouse_id=WAREHOUSE_ID,
                    product_id=PRODUCT_ID,
                    product_name="Organic Milk 1L",
                    total_stock=100,
                    available_stock=100,
                    reserved_stock=0,
                    unit_cost=1.25,
                ),
                WarehouseInventory(
                    warehouse_id=WAREHOUSE_ID,
                    product_id=EMPTY_PRODUCT_ID,
                    product_name="Sourdough Loaf",
                    total_stock=0,
                    available_stock=0,
                    reserved_stock=0,
                    unit_cost=2.10,
                ),
            ]
        )
        await db.commit()
    return {
        "store_id": STORE_ID,
        "warehouse_id": WAREHOUSE_ID,
        "product_id": PRODUCT_ID,
        "empty_product_id": EMPTY_PRODUCT_ID,
    }


@pytest.fixture
async def client(runtime):
    """Async test client bound to the test runtime."""
    from api.main import app

    app.state.runtime = runtime
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.state.runtime = None


@pytest.fixture
def warehouse_level(session_factory):
    """Read (total, available, reserved) for a warehouse product."""

    async def _read(product_id=PRODUCT_ID, warehouse_id=WAREHOUSE_ID):
        async with session_factory() as db:
            result = await db.execute(
                select(
                    WarehouseInventory.total_stock,
                    WarehouseInventory.available_stock,
                    WarehouseInventory.reserved_stock,
                ).where(
                    WarehouseInventory.warehouse_id == warehouse_id,
                    WarehouseInventory.product_id == product_id,
                )
            )
            return tuple(result.one())

    return _read


@pytest.fixture
def store_stock(session_factory):
    """Read current_stock for a store product."""

    async def _read(product_id=PRODUCT_ID, store_id=STORE_ID):
        async with session_factory() as db:
            result = await db.execute(
                select(StoreInventory.current_stock).where(
                    StoreInventory.store_id == store_id,
                    StoreInventory.product_id == product_id,
                )
            )
            return result.scalar_one()

    return _read
