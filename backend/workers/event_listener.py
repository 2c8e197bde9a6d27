"""
Stage Event Listener — consumes the four replenishment topics.

Each received event is validated against its stage contract and routed to
a per-stage handler that records it in the log as part of the order's
digital thread. Malformed or unknown events are counted and logged; the
loop never dies on a bad message.

Run with:
    python -m workers.event_listener
"""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import AsyncIterator, Callable
from typing import Any

import structlog

from core.config import get_settings
from core.logging import configure_logging
from replenishment.events import TOPIC_TO_STAGE, Stage, all_topics, validate_event
from replenishment.runtime import event_bus_config

logger = structlog.get_logger()


def handle_low_stock_alert(event: dict[str, Any]) -> None:
    logger.info(
        "listener.low_stock_alert",
        replenishment_id=event["replenishment_id"],
        store_id=event["store_id"],
        product_id=event["product_id"],
        current_stock=event["current_stock"],
        requested_quantity=event["requested_quantity"],
    )


def handle_transfer_order_created(event: dict[str, Any]) -> None:
    logger.info(
        "listener.transfer_order_created",
        replenishment_id=event["replenishment_id"],
        transfer_order_id=event["transfer_order_id"],
        warehouse_id=event["warehouse_id"],
        transfer_quantity=event["transfer_quantity"],
    )


def handle_shipment_dispatched(event: dict[str, Any]) -> None:
    logger.info(
        "listener.shipment_dispatched",
        replenishment_id=event["replenishment_id"],
        shipment_id=event["shipment_id"],
        tracking_number=event["tracking_number"],
        carrier=event["carrier"],
        estimated_delivery_date=event["estimated_delivery_date"],
    )


def handle_stock_received(event: dict[str, Any]) -> None:
    logger.info(
        "listener.stock_received",
        replenishment_id=event["replenishment_id"],
        received_quantity=event["received_quantity"],
        new_stock_level=event["new_stock_level"],
    )


HANDLERS: dict[Stage, Callable[[dict[str, Any]], None]] = {
    Stage.LOW_STOCK_ALERT: handle_low_stock_alert,
    Stage.TRANSFER_ORDER_CREATED: handle_transfer_order_created,
    Stage.SHIPMENT_DISPATCHED: handle_shipment_dispatched,
    Stage.STOCK_RECEIVED: handle_stock_received,
}


class EventListener:
    """Routes consumed stage events to their handlers and keeps tallies."""

    def __init__(self, handlers: dict[Stage, Callable[[dict[str, Any]], None]] | None = None):
        self.handlers = handlers or HANDLERS
        self.stats: Counter[str] = Counter()

    def dispatch(self, topic: str, payload: dict[str, Any] | None) -> bool:
        """Handle one message. Returns True if a handler accepted it."""
        stage = TOPIC_TO_STAGE.get(topic)
        if stage is None:
            self.stats["unknown_topic"] += 1
            logger.warning("listener.unknown_topic", topic=topic)
            return False

        if not isinstance(payload, dict):
            self.stats["malformed"] += 1
            logger.warning("listener.malformed_event", topic=topic, errors=["payload is not a JSON object"])
            return False

        errors = validate_event(stage, payload)
        if errors:
            self.stats["malformed"] += 1
            logger.warning(
                "listener.malformed_event",
                topic=topic,
                replenishment_id=payload.get("replenishment_id"),
                errors=errors,
            )
            return False

        try:
            self.handlers[stage](payload)
        except Exception as e:  # noqa: BLE001
            self.stats["handler_error"] += 1
            logger.error("listener.handler_failed", topic=topic, error=str(e), exc_info=True)
            return False

        self.stats[stage.value] += 1
        return True

    async def run(self, messages: AsyncIterator[tuple[str, int, dict[str, Any] | None]]) -> Counter[str]:
        async for topic, offset, payload in messages:
            logger.debug("listener.received", topic=topic, offset=offset)
            self.dispatch(topic, payload)
        return self.stats


async def main() -> None:
    from integrations.kafka_bus import KafkaEventBus

    settings = get_settings()
    configure_logging(settings)
    bus = KafkaEventBus(event_bus_config(settings))
    listener = EventListener()
    logger.info("listener.starting", topics=all_topics())
    try:
        await listener.run(bus.consume(all_topics()))
    finally:
        logger.info("listener.stopped", **dict(listener.stats))


if __name__ == "__main__":
    asyncio.run(main())
