"""
Replenishment order state machine.

    ALERT_RAISED ──▶ PENDING_PICKING ──▶ IN_TRANSIT ──▶ COMPLETED
         │                 │                 │
         └────────┬────────┴─────────────────┘
                  ▼
         CANCELLED / FAILED   (administrative only)

The forward path is a strict total order: no skipping, no repeats. Every
accepted transition appends exactly one history entry carrying the status
the order moved *to*, so the last history entry always matches ``status``.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from core.exceptions import InvalidStateTransition
from db.models import ReplenishmentOrder, StatusHistoryEntry, utcnow


class OrderStatus(str, Enum):
    ALERT_RAISED = "ALERT_RAISED"
    PENDING_PICKING = "PENDING_PICKING"
    IN_TRANSIT = "IN_TRANSIT"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class Priority(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


# target status -> the only status it may be entered from
FORWARD_TRANSITIONS: dict[OrderStatus, OrderStatus] = {
    OrderStatus.PENDING_PICKING: OrderStatus.ALERT_RAISED,
    OrderStatus.IN_TRANSIT: OrderStatus.PENDING_PICKING,
    OrderStatus.COMPLETED: OrderStatus.IN_TRANSIT,
}

ACTIVE_STATUSES = (OrderStatus.ALERT_RAISED, OrderStatus.PENDING_PICKING, OrderStatus.IN_TRANSIT)
TERMINAL_STATUSES = (OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.FAILED)
ADMINISTRATIVE_TARGETS = (OrderStatus.CANCELLED, OrderStatus.FAILED)


def is_terminal(status: str) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES


def required_status_for(target: OrderStatus) -> str:
    """Human-readable precondition for entering ``target``."""
    if target in ADMINISTRATIVE_TARGETS:
        return "|".join(s.value for s in ACTIVE_STATUSES)
    if target not in FORWARD_TRANSITIONS:
        return "<none>"
    return FORWARD_TRANSITIONS[target].value


def can_transition(current: str, target: OrderStatus) -> bool:
    current_status = OrderStatus(current)
    if target in ADMINISTRATIVE_TARGETS:
        return current_status in ACTIVE_STATUSES
    return FORWARD_TRANSITIONS.get(target) == current_status


def ensure_transition(order: ReplenishmentOrder, target: OrderStatus) -> None:
    """Raise InvalidStateTransition unless ``order`` may move to ``target``."""
    if not can_transition(order.status, target):
        raise InvalidStateTransition(
            order.replenishment_id,
            current_status=order.status,
            required_status=required_status_for(target),
            target_status=target.value,
        )


def history_entry(
    order: ReplenishmentOrder,
    status: OrderStatus,
    actor: str,
    note: str,
    timestamp: datetime | None = None,
) -> StatusHistoryEntry:
    return StatusHistoryEntry(
        replenishment_id=order.replenishment_id,
        sequence=len(order.status_history) + 1,
        status=status.value,
        timestamp=timestamp or utcnow(),
        actor=actor,
        note=note,
    )


def open_order(order: ReplenishmentOrder, actor: str, note: str) -> StatusHistoryEntry:
    """Seed a freshly created order with its ALERT_RAISED history entry."""
    if order.status_history:
        raise InvalidStateTransition(
            order.replenishment_id,
            current_status=order.status,
            required_status="<new>",
            target_status=OrderStatus.ALERT_RAISED.value,
        )
    order.status = OrderStatus.ALERT_RAISED.value
    entry = history_entry(order, OrderStatus.ALERT_RAISED, actor, note, timestamp=order.alert_triggered_at)
    order.status_history.append(entry)
    return entry


def apply_transition(
    order: ReplenishmentOrder,
    target: OrderStatus,
    actor: str,
    detail: str = "",
) -> StatusHistoryEntry:
    """Move ``order`` to ``target`` and append the audit entry."""
    ensure_transition(order, target)
    previous = order.status
    now = utcnow()
    note = f"Status changed from {previous} to {target.value}. {detail}".strip()
    entry = history_entry(order, target, actor, note, timestamp=now)
    order.status = target.value
    order.updated_at = now
    order.status_history.append(entry)
    return entry
