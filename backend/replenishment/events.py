"""
Replenishment stage event contracts.

Topic names, event types and required payload fields are consumed by
downstream systems and must not change:

    LOW_STOCK_ALERT        → sentry.low-stock-alert
    TRANSFER_ORDER_CREATED → sentry.transfer-order-created
    SHIPMENT_DISPATCHED    → sentry.shipment-dispatched
    STOCK_RECEIVED         → sentry.stock-received

Every payload additionally carries ``event_type``, ``stage``,
``timestamp`` and ``source`` (added by the notifier).
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from db.models import ReplenishmentOrder

TOPIC_PREFIX = "sentry"
DEFAULT_SOURCE = "project-sentry"
ENVELOPE_FIELDS = ("replenishment_id", "event_type", "stage", "timestamp", "source")


class Stage(str, Enum):
    LOW_STOCK_ALERT = "LOW_STOCK_ALERT"
    TRANSFER_ORDER_CREATED = "TRANSFER_ORDER_CREATED"
    SHIPMENT_DISPATCHED = "SHIPMENT_DISPATCHED"
    STOCK_RECEIVED = "STOCK_RECEIVED"

    @property
    def event_type(self) -> str:
        return self.value.lower().replace("_", "-")

    @property
    def topic(self) -> str:
        return f"{TOPIC_PREFIX}.{self.event_type}"


STAGE_FIELDS: dict[Stage, tuple[str, ...]] = {
    Stage.LOW_STOCK_ALERT: ("store_id", "product_id", "product_name", "current_stock", "requested_quantity"),
    Stage.TRANSFER_ORDER_CREATED: ("transfer_order_id", "warehouse_id", "product_id", "transfer_quantity"),
    Stage.SHIPMENT_DISPATCHED: (
        "shipment_id",
        "tracking_number",
        "carrier",
        "estimated_delivery_date",
        "shipped_quantity",
    ),
    Stage.STOCK_RECEIVED: ("received_quantity", "new_stock_level"),
}

TOPIC_TO_STAGE: dict[str, Stage] = {stage.topic: stage for stage in Stage}


def all_topics() -> list[str]:
    return [stage.topic for stage in Stage]


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def stage_payload(stage: Stage, order: ReplenishmentOrder) -> dict[str, Any]:
    """Stage-specific fields for ``order`` (without the envelope)."""
    payload: dict[str, Any] = {"replenishment_id": order.replenishment_id}
    if stage is Stage.LOW_STOCK_ALERT:
        payload.update(
            store_id=order.store_id,
            product_id=order.product_id,
            product_name=order.product_name,
            current_stock=order.current_stock,
            requested_quantity=order.requested_quantity,
        )
    elif stage is Stage.TRANSFER_ORDER_CREATED:
        payload.update(
            transfer_order_id=order.transfer_order_id,
            warehouse_id=order.warehouse_id,
            product_id=order.product_id,
            transfer_quantity=order.transfer_quantity,
        )
    elif stage is Stage.SHIPMENT_DISPATCHED:
        payload.update(
            shipment_id=order.shipment_id,
            tracking_number=order.tracking_number,
            carrier=order.carrier,
            estimated_delivery_date=_iso(order.estimated_delivery_at),
            shipped_quantity=order.shipped_quantity,
        )
    elif stage is Stage.STOCK_RECEIVED:
        payload.update(
            store_id=order.store_id,
            product_id=order.product_id,
            received_quantity=order.received_quantity,
            new_stock_level=order.new_stock_level,
        )
    return payload


def envelope(stage: Stage, payload: dict[str, Any], source: str = DEFAULT_SOURCE) -> dict[str, Any]:
    return {
        **payload,
        "event_type": stage.event_type,
        "stage": stage.value,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "source": source,
    }


def validate_event(stage: Stage, event: dict[str, Any]) -> list[str]:
    """Validate an event against its stage contract, returning list of errors."""
    errors = []
    for field in ENVELOPE_FIELDS + STAGE_FIELDS[stage]:
        if field not in event:
            errors.append(f"Missing required field: {field}")
    if event.get("stage") not in (None, stage.value):
        errors.append(f"Stage mismatch: expected {stage.value}, got {event.get('stage')}")
    return errors
