"""
In-memory event bus.

Keeps every published message in order. Used when Kafka is disabled in
local runs and by the test suite, which can also make it fail on demand.
"""

from __future__ import annotations

import asyncio
from typing import Any

from integrations.base import EventBus, EventBusKind, PublishedMessage, register_bus


@register_bus
class InMemoryEventBus(EventBus):
    @property
    def kind(self) -> EventBusKind:
        return EventBusKind.MEMORY

    def __init__(self, config: dict[str, Any] | None = None):
        super().__init__(config or {})
        self.messages: list[PublishedMessage] = []
        self.fail_with: Exception | None = None
        self.delay_seconds: float = 0.0
        self._started = False

    @property
    def connected(self) -> bool:
        return self._started

    async def start(self) -> None:
        self._started = True

    async def publish(self, topic: str, key: str, payload: dict[str, Any]) -> PublishedMessage:
        await self.start()
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.fail_with is not None:
            raise self.fail_with
        message = PublishedMessage(topic=topic, key=key, payload=dict(payload))
        self.messages.append(message)
        self.logger.debug("memory_bus.published", topic=topic, key=key)
        return message

    async def stop(self) -> None:
        self._started = False

    def topics(self) -> list[str]:
        return [m.topic for m in self.messages]

    def for_key(self, key: str) -> list[PublishedMessage]:
        return [m for m in self.messages if m.key == key]
