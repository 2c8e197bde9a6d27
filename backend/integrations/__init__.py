"""
Event bus integrations package.

Pluggable transports for replenishment stage events:
  - Kafka   (production — aiokafka)
  - Memory  (local runs and tests)

Usage:
    from integrations.base import get_event_bus, EventBusKind

    bus = get_event_bus(EventBusKind.KAFKA, config={"bootstrap_servers": "localhost:9092"})
    await bus.publish("sentry.low-stock-alert", key="REP-...", payload={...})
"""

from integrations.base import (
    EventBus,
    EventBusKind,
    PublishedMessage,
    get_event_bus,
    register_bus,
)
from integrations.kafka_bus import KafkaEventBus
from integrations.memory_bus import InMemoryEventBus

__all__ = [
    "EventBus",
    "EventBusKind",
    "PublishedMessage",
    "get_event_bus",
    "register_bus",
    "KafkaEventBus",
    "InMemoryEventBus",
]
