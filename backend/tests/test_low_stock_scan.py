import asyncio

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from alerts.engine import classify_priority, find_low_stock_items, raise_low_stock_alerts
from core.config import Settings
from db.models import ReplenishmentOrder, StoreInventory
from db.session import create_schema
from replenishment.state_machine import Priority


@pytest.mark.parametrize(
    "current, threshold, expected",
    [(0, 10, Priority.URGENT), (5, 10, Priority.HIGH), (6, 10, Priority.NORMAL), (0, 0, Priority.URGENT)],
)
def test_classify_priority(current, threshold, expected):
    assert classify_priority(current, threshold) is expected


async def test_scan_raises_one_alert_per_low_item(workflow, runtime, bus, seeded):
    summary = await raise_low_stock_alerts(workflow)

    assert summary["scanned"] == 2
    assert summary["alerts_created"] == 2
    assert summary["failed"] == 0

    orders = {o.product_id: o for o in await workflow.list_active_orders()}
    assert orders["PRD-002"].priority == "URGENT"
    assert orders["PRD-002"].requested_quantity == 8
    assert orders["PRD-001"].priority == "HIGH"
    assert orders["PRD-001"].alert_triggered_by == "INVENTORY_MONITOR"

    await runtime.notifier.drain()
    assert bus.topics() == ["sentry.low-stock-alert", "sentry.low-stock-alert"]


async def test_scan_skips_items_with_active_orders(workflow, seeded, session_factory):
    first = await raise_low_stock_alerts(workflow)
    second = await raise_low_stock_alerts(workflow)
    assert second["alerts_created"] == 0

    # a terminal order no longer blocks a new alert
    await workflow.cancel_order(first["replenishment_ids"][0], reason="recount")
    third = await raise_low_stock_alerts(workflow)
    assert third["alerts_created"] == 1

    async with session_factory() as db:
        assert await find_low_stock_items(db) == []
        assert len(await find_low_stock_items(db, exclude_active=False)) == 2


async def test_overlapping_scans_open_one_order_per_item(workflow, seeded):
    first, second = await asyncio.gather(raise_low_stock_alerts(workflow), raise_low_stock_alerts(workflow))

    assert first["alerts_created"] + second["alerts_created"] == 2
    assert first["skipped"] + second["skipped"] == first["scanned"] + second["scanned"] - 2
    active = sorted((o.store_id, o.product_id) for o in await workflow.list_active_orders())
    assert active == [("ST-001", "PRD-001"), ("ST-001", "PRD-002")]


async def test_scan_limited_to_store(workflow, seeded):
    summary = await raise_low_stock_alerts(workflow, store_id="ST-999")
    assert summary["scanned"] == 0


def test_scan_low_stock_task(tmp_path, monkeypatch):
    from workers.low_stock import scan_low_stock

    settings = Settings(
        _env_file=None,
        app_env="test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'scan.db'}",
        database_auto_create=True,
        event_bus="memory",
    )

    async def _seed() -> None:
        engine = create_async_engine(settings.database_url)
        await create_schema(engine)
        session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with session_factory() as db:
            db.add(
                StoreInventory(
                    store_id="ST-042",
                    product_id="PRD-777",
                    product_name="Paper Towels 6pk",
                    product_category="Household",
                    current_stock=2,
                    reorder_threshold=6,
                    unit_cost=4.10,
                )
            )
            await db.commit()
        await engine.dispose()

    async def _orders() -> list[ReplenishmentOrder]:
        from sqlalchemy import select

        engine = create_async_engine(settings.database_url)
        try:
            async with async_sessionmaker(engine, class_=AsyncSession)() as db:
                return list((await db.execute(select(ReplenishmentOrder))).scalars().all())
        finally:
            await engine.dispose()

    asyncio.run(_seed())
    monkeypatch.setattr("core.config.get_settings", lambda: settings)

    result = scan_low_stock.run(store_id="ST-042")
    assert result["status"] == "success"
    assert result["alerts_created"] == 1

    orders = asyncio.run(_orders())
    assert len(orders) == 1
    assert orders[0].requested_quantity == 10
