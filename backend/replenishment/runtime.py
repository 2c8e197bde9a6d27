"""
Runtime wiring for the workflow engine.

The API lifespan and the workers each build their own engine, bus and
notifier from settings; nothing here is created at import time.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from core.config import Settings
from db.session import build_engine, build_session_factory, create_schema
from integrations.base import EventBus, get_event_bus
from inventory.ledger import InventoryLedger
from replenishment.engine import ReplenishmentWorkflowEngine
from replenishment.notifier import EventNotifier


def event_bus_config(settings: Settings) -> dict:
    return {
        "bootstrap_servers": settings.kafka_bootstrap_servers,
        "client_id": settings.kafka_client_id,
        "consumer_group": settings.kafka_consumer_group,
        "request_timeout_ms": settings.kafka_request_timeout_ms,
    }


@dataclass
class WorkflowRuntime:
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    bus: EventBus
    notifier: EventNotifier
    workflow: ReplenishmentWorkflowEngine

    async def close(self) -> None:
        """Flush outstanding notifications, then release connections."""
        try:
            await self.notifier.drain()
            await self.bus.stop()
        finally:
            await self.engine.dispose()


async def build_runtime(settings: Settings, bus: EventBus | None = None) -> WorkflowRuntime:
    engine = build_engine(settings)
    if settings.database_auto_create:
        await create_schema(engine)
    session_factory = build_session_factory(engine)
    bus = bus or get_event_bus(settings.event_bus, event_bus_config(settings))
    notifier = EventNotifier(
        bus,
        source=settings.event_source,
        timeout_seconds=settings.notification_timeout_seconds,
    )
    workflow = ReplenishmentWorkflowEngine(
        session_factory,
        notifier,
        ledger=InventoryLedger(settings.reservation_retry_attempts),
        settings=settings,
    )
    return WorkflowRuntime(
        engine=engine,
        session_factory=session_factory,
        bus=bus,
        notifier=notifier,
        workflow=workflow,
    )
