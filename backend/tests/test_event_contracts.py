"""
Stage event contract tests — topics, payload fields and the listener.

Downstream consumers depend on these names; a change here is a breaking
change for them.
"""

import pytest

from replenishment.events import (
    STAGE_FIELDS,
    TOPIC_TO_STAGE,
    Stage,
    all_topics,
    envelope,
    stage_payload,
    validate_event,
)
from workers.event_listener import EventListener


def test_topic_names_are_stable():
    assert all_topics() == [
        "sentry.low-stock-alert",
        "sentry.transfer-order-created",
        "sentry.shipment-dispatched",
        "sentry.stock-received",
    ]
    assert Stage.SHIPMENT_DISPATCHED.event_type == "shipment-dispatched"
    assert TOPIC_TO_STAGE["sentry.stock-received"] is Stage.STOCK_RECEIVED


async def test_published_payloads_satisfy_contracts(workflow, runtime, bus, seeded):
    order = await workflow.create_low_stock_alert(
        store_id=seeded["store_id"],
        product_id=seeded["product_id"],
        product_name="Organic Milk 1L",
        current_stock=5,
        reorder_threshold=10,
    )
    rid = order.replenishment_id
    await workflow.create_transfer_order(rid)
    await workflow.create_shipment(rid)
    await workflow.confirm_delivery(rid)
    await runtime.notifier.drain()

    for message in bus.for_key(rid):
        stage = TOPIC_TO_STAGE[message.topic]
        assert validate_event(stage, message.payload) == []
        assert message.payload["stage"] == stage.value
        assert message.payload["event_type"] == stage.event_type
        assert message.payload["replenishment_id"] == rid


def test_missing_fields_are_reported():
    event = {"replenishment_id": "REP-1-ABCDEF12", "stage": "STOCK_RECEIVED"}
    errors = validate_event(Stage.STOCK_RECEIVED, event)
    assert "Missing required field: received_quantity" in errors
    assert "Missing required field: timestamp" in errors


def test_stage_mismatch_is_reported():
    event = envelope(Stage.LOW_STOCK_ALERT, {"replenishment_id": "REP-1"})
    errors = validate_event(Stage.STOCK_RECEIVED, event)
    assert any(e.startswith("Stage mismatch") for e in errors)


class TestEventListener:
    @pytest.fixture
    def received(self):
        return []

    @pytest.fixture
    def listener(self, received):
        handlers = {stage: (lambda event, s=stage: received.append((s, event))) for stage in Stage}
        return EventListener(handlers=handlers)

    def _valid_event(self, stage):
        payload = {field: "x" for field in STAGE_FIELDS[stage]}
        payload["replenishment_id"] = "REP-1-ABCDEF12"
        return envelope(stage, payload)

    def test_routes_by_topic(self, listener, received):
        assert listener.dispatch(Stage.TRANSFER_ORDER_CREATED.topic, self._valid_event(Stage.TRANSFER_ORDER_CREATED))
        assert received[0][0] is Stage.TRANSFER_ORDER_CREATED
        assert listener.stats["TRANSFER_ORDER_CREATED"] == 1

    def test_malformed_events_are_counted(self, listener, received):
        assert not listener.dispatch(Stage.LOW_STOCK_ALERT.topic, {"replenishment_id": "REP-1"})
        assert not listener.dispatch(Stage.LOW_STOCK_ALERT.topic, None)
        assert not listener.dispatch("sentry.unknown", self._valid_event(Stage.LOW_STOCK_ALERT))
        assert received == []
        assert listener.stats["malformed"] == 2
        assert listener.stats["unknown_topic"] == 1

    def test_handler_errors_do_not_escape(self, received):
        def _boom(event):
            raise RuntimeError("handler bug")

        listener = EventListener(handlers={stage: _boom for stage in Stage})
        assert not listener.dispatch(Stage.STOCK_RECEIVED.topic, self._valid_event(Stage.STOCK_RECEIVED))
        assert listener.stats["handler_error"] == 1

    async def test_run_consumes_stream(self, listener, received):
        async def _stream():
            for offset, stage in enumerate(Stage):
                yield stage.topic, offset, self._valid_event(stage)

        stats = await listener.run(_stream())
        assert [s for s, _ in received] == list(Stage)
        assert sum(stats[s.value] for s in Stage) == 4

    def test_default_handlers_accept_real_payloads(self):
        listener = EventListener()
        for stage in Stage:
            assert listener.dispatch(stage.topic, self._valid_event(stage))


def test_stage_payload_shapes():
    class _Order:
        replenishment_id = "REP-1-ABCDEF12"
        store_id = "ST-001"
        product_id = "PRD-001"
        received_quantity = 15
        new_stock_level = 20

    payload = stage_payload(Stage.STOCK_RECEIVED, _Order())
    assert payload == {
        "replenishment_id": "REP-1-ABCDEF12",
        "store_id": "ST-001",
        "product_id": "PRD-001",
        "received_quantity": 15,
        "new_stock_level": 20,
    }
