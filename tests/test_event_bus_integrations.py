"""
Tests for the Event Bus Integration Layer

Covers:
  - Bus base class / registry
  - In-memory bus recording and failure injection
  - Kafka message (de)serialization
  - Stage event envelopes
"""

import json

import pytest

from integrations.base import (
    _BUS_REGISTRY,
    EventBus,
    EventBusKind,
    PublishedMessage,
    get_event_bus,
)
from integrations.kafka_bus import KafkaEventBus, _deserialize, _serialize
from integrations.memory_bus import InMemoryEventBus
from replenishment.events import Stage, envelope, validate_event


# ── Registry Tests ─────────────────────────────────────────────────────────

class TestBusRegistry:
    """Test the transport registry."""

    def test_all_kinds_registered(self):
        assert set(_BUS_REGISTRY) == {EventBusKind.KAFKA, EventBusKind.MEMORY}

    def test_factory_returns_configured_kafka_bus(self):
        bus = get_event_bus("kafka", {"bootstrap_servers": "broker:29092", "client_id": "sentry-test"})
        assert isinstance(bus, KafkaEventBus)
        assert bus.bootstrap_servers == "broker:29092"
        assert bus.client_id == "sentry-test"

    def test_factory_rejects_unknown_kind(self):
        with pytest.raises(ValueError):
            get_event_bus("smoke-signals", {})

    def test_subclasses_are_event_buses(self):
        assert issubclass(KafkaEventBus, EventBus)
        assert issubclass(InMemoryEventBus, EventBus)


# ── In-memory Bus Tests ────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestInMemoryBus:
    """Test the in-memory transport used for local runs."""

    async def test_records_messages_in_order(self):
        bus = InMemoryEventBus()
        await bus.publish("sentry.low-stock-alert", "REP-1", {"n": 1})
        await bus.publish("sentry.transfer-order-created", "REP-1", {"n": 2})
        await bus.publish("sentry.low-stock-alert", "REP-2", {"n": 3})

        assert bus.topics() == [
            "sentry.low-stock-alert",
            "sentry.transfer-order-created",
            "sentry.low-stock-alert",
        ]
        assert [m.payload["n"] for m in bus.for_key("REP-1")] == [1, 2]
        assert bus.connected

    async def test_payload_is_copied(self):
        bus = InMemoryEventBus()
        payload = {"n": 1}
        message = await bus.publish("t", "k", payload)
        payload["n"] = 2
        assert message.payload == {"n": 1}
        assert isinstance(message, PublishedMessage)

    async def test_failure_injection(self):
        bus = InMemoryEventBus()
        bus.fail_with = ConnectionError("down")
        with pytest.raises(ConnectionError):
            await bus.publish("t", "k", {})
        assert bus.messages == []

    async def test_status(self):
        bus = InMemoryEventBus()
        await bus.stop()
        status = bus.get_status()
        assert status["event_bus"] == "memory"
        assert status["connected"] is False


# ── Kafka Serialization Tests ──────────────────────────────────────────────

class TestKafkaSerialization:
    """Test the wire format handed to aiokafka."""

    def test_round_trips_event_envelope(self):
        event = envelope(Stage.LOW_STOCK_ALERT, {"replenishment_id": "REP-1", "current_stock": 5})
        raw = _serialize(event)
        assert isinstance(raw, bytes)
        assert _deserialize(raw) == event

    def test_non_json_values_are_stringified(self):
        from datetime import datetime, timezone

        raw = _serialize({"at": datetime(2024, 1, 15, tzinfo=timezone.utc)})
        assert json.loads(raw)["at"].startswith("2024-01-15")

    def test_empty_value(self):
        assert _deserialize(None) == {}


# ── Envelope Tests ─────────────────────────────────────────────────────────

class TestEnvelope:
    """Test the common stage event envelope."""

    def test_envelope_fields(self):
        event = envelope(Stage.SHIPMENT_DISPATCHED, {"replenishment_id": "REP-1"}, source="sentry-test")
        assert event["event_type"] == "shipment-dispatched"
        assert event["stage"] == "SHIPMENT_DISPATCHED"
        assert event["source"] == "sentry-test"
        assert event["timestamp"].endswith("+00:00")

    def test_validate_event_missing_fields(self):
        errors = validate_event(Stage.TRANSFER_ORDER_CREATED, {"replenishment_id": "1"})
        # event_type, stage, timestamp, source + 4 stage fields
        assert len(errors) == 8
