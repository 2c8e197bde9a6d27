"""
Event Bus — Abstract Base Class

The workflow engine publishes stage events through this interface so the
rest of the system is broker-agnostic. Kafka is the production transport;
the in-memory bus backs local runs and tests.

Lifecycle:
    1. __init__(config)              — load broker settings
    2. start()                       — open connections (idempotent)
    3. publish(topic, key, payload)  — send one message; raises on failure
    4. stop()                        — flush and close
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger()


# ── Bus kinds ─────────────────────────────────────────────────────────────


class EventBusKind(str, Enum):
    """Supported event bus transports."""

    KAFKA = "kafka"
    MEMORY = "memory"


# ── Published message container ───────────────────────────────────────────


@dataclass
class PublishedMessage:
    """One message as handed to the transport."""

    topic: str
    key: str
    payload: dict[str, Any]
    published_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ── Abstract bus ──────────────────────────────────────────────────────────


class EventBus(ABC):
    """Base class for event bus transports."""

    def __init__(self, config: dict[str, Any]):
        self.config = config
        self.logger = logger.bind(event_bus=self.kind.value)

    @property
    @abstractmethod
    def kind(self) -> EventBusKind:
        """Return the transport this bus implements."""
        ...

    @property
    @abstractmethod
    def connected(self) -> bool:
        ...

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def publish(self, topic: str, key: str, payload: dict[str, Any]) -> PublishedMessage:
        """Send one message. Raises on any delivery failure."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    def get_status(self) -> dict[str, Any]:
        return {
            "event_bus": self.kind.value,
            "connected": self.connected,
            "checked_at": datetime.now(timezone.utc).isoformat(),
        }


# ── Bus registry ──────────────────────────────────────────────────────────

_BUS_REGISTRY: dict[EventBusKind, type[EventBus]] = {}


def register_bus(bus_cls: type[EventBus]):
    """Decorator: register a bus class for its transport kind."""
    _BUS_REGISTRY[bus_cls.kind.fget(None)] = bus_cls  # type: ignore
    return bus_cls


def get_event_bus(kind: EventBusKind | str, config: dict[str, Any]) -> EventBus:
    """Factory: return the right bus instance for the given kind."""
    bus_kind = EventBusKind(kind)
    bus_cls = _BUS_REGISTRY.get(bus_kind)
    if bus_cls is None:
        raise ValueError(f"No event bus registered for kind: {bus_kind.value}")
    return bus_cls(config=config)
