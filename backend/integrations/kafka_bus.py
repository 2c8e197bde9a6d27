"""
Kafka Event Bus (aiokafka)

Producer side publishes the four replenishment stage events; the consumer
side feeds the event listener worker.

Config expects:
    {
        "bootstrap_servers": "localhost:9092",
        "client_id": "project-sentry",
        "consumer_group": "sentry-consumer-group",
        "request_timeout_ms": 10000,
        "auto_offset_reset": "latest",
        "max_poll_records": 500
    }
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer

from integrations.base import EventBus, EventBusKind, PublishedMessage, register_bus


def _serialize(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, default=str).encode("utf-8")


def _deserialize(raw: bytes | None) -> dict[str, Any]:
    if raw is None:
        return {}
    return json.loads(raw.decode("utf-8"))


@register_bus
class KafkaEventBus(EventBus):
    """Kafka transport. The producer is started lazily on first publish."""

    @property
    def kind(self) -> EventBusKind:
        return EventBusKind.KAFKA

    def __init__(self, config: dict[str, Any]):
        super().__init__(config)
        self.bootstrap_servers = config.get("bootstrap_servers", "localhost:9092")
        self.client_id = config.get("client_id", "project-sentry")
        self.consumer_group = config.get("consumer_group", "sentry-consumer-group")
        self.request_timeout_ms = int(config.get("request_timeout_ms", 10000))
        self._producer: AIOKafkaProducer | None = None

    @property
    def connected(self) -> bool:
        return self._producer is not None

    async def start(self) -> None:
        if self._producer is not None:
            return
        producer = AIOKafkaProducer(
            bootstrap_servers=self.bootstrap_servers,
            client_id=self.client_id,
            request_timeout_ms=self.request_timeout_ms,
            enable_idempotence=True,
            key_serializer=lambda k: k.encode("utf-8"),
            value_serializer=_serialize,
        )
        await producer.start()
        self._producer = producer
        self.logger.info("kafka.producer_started", bootstrap_servers=self.bootstrap_servers)

    async def publish(self, topic: str, key: str, payload: dict[str, Any]) -> PublishedMessage:
        await self.start()
        metadata = await self._producer.send_and_wait(topic, value=payload, key=key)
        self.logger.info(
            "kafka.published",
            topic=topic,
            key=key,
            partition=metadata.partition,
            offset=metadata.offset,
        )
        return PublishedMessage(topic=topic, key=key, payload=payload)

    async def stop(self) -> None:
        if self._producer is None:
            return
        try:
            await self._producer.stop()
        finally:
            self._producer = None
            self.logger.info("kafka.producer_stopped")

    async def consume(self, topics: list[str]) -> AsyncIterator[tuple[str, int, dict[str, Any] | None]]:
        """
        Yield (topic, offset, payload) for every message on ``topics``.

        Undecodable messages are yielded with payload None so the caller
        can count them without the loop dying.
        """
        consumer = AIOKafkaConsumer(
            *topics,
            bootstrap_servers=self.bootstrap_servers,
            client_id=self.client_id,
            group_id=self.consumer_group,
            auto_offset_reset=self.config.get("auto_offset_reset", "latest"),
            enable_auto_commit=True,
            max_poll_records=self.config.get("max_poll_records", 500),
            request_timeout_ms=self.request_timeout_ms,
        )
        await consumer.start()
        self.logger.info("kafka.consumer_started", topics=topics, group=self.consumer_group)
        try:
            async for msg in consumer:
                try:
                    payload = _deserialize(msg.value)
                except (UnicodeDecodeError, json.JSONDecodeError) as e:
                    self.logger.warning("kafka.undecodable_message", topic=msg.topic, offset=msg.offset, error=str(e))
                    payload = None
                yield msg.topic, msg.offset, payload
        finally:
            await consumer.stop()
            self.logger.info("kafka.consumer_stopped")
