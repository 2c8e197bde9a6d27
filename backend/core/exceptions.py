"""
Typed exceptions for the replenishment workflow.

Every error carries a machine-readable ``code`` and structured context so
the API layer can translate it without parsing messages:

    ReplenishmentError
    +-- NotFound
    +-- InvalidStateTransition
    +-- InsufficientStock
    +-- ValidationError
    +-- PersistenceError
    |   +-- ConcurrencyConflict
    |   +-- InventoryInvariantViolation
    +-- NotificationFailure   (logged by the notifier, never raised to callers)
"""

from __future__ import annotations

from typing import Any


class ReplenishmentError(Exception):
    """Base class for all workflow errors."""

    code: str = "REPLENISHMENT_ERROR"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "detail": self.message, **self.context}


class NotFound(ReplenishmentError):
    code = "NOT_FOUND"

    def __init__(self, entity: str, key: str):
        super().__init__(f"{entity} not found: {key}", entity=entity, key=key)
        self.entity = entity
        self.key = key


class InvalidStateTransition(ReplenishmentError):
    code = "INVALID_STATE_TRANSITION"

    def __init__(self, replenishment_id: str, current_status: str, required_status: str, target_status: str):
        super().__init__(
            f"Cannot move {replenishment_id} to {target_status}: "
            f"status is {current_status}, requires {required_status}",
            replenishment_id=replenishment_id,
            current_status=current_status,
            required_status=required_status,
            target_status=target_status,
        )
        self.replenishment_id = replenishment_id
        self.current_status = current_status
        self.required_status = required_status
        self.target_status = target_status


class InsufficientStock(ReplenishmentError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, warehouse_id: str, product_id: str, available: int, requested: int):
        super().__init__(
            f"No stock available in warehouse {warehouse_id} for {product_id}",
            warehouse_id=warehouse_id,
            product_id=product_id,
            available=available,
            requested=requested,
        )
        self.warehouse_id = warehouse_id
        self.product_id = product_id
        self.available = available
        self.requested = requested


class ValidationError(ReplenishmentError):
    code = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}", field=field)
        self.field = field


class PersistenceError(ReplenishmentError):
    code = "PERSISTENCE_ERROR"


class ConcurrencyConflict(PersistenceError):
    code = "CONCURRENCY_CONFLICT"


class InventoryInvariantViolation(PersistenceError):
    code = "INVENTORY_INVARIANT_VIOLATION"


class NotificationFailure(ReplenishmentError):
    code = "NOTIFICATION_FAILURE"

    def __init__(self, topic: str, key: str, reason: str):
        super().__init__(f"Publish to {topic} failed: {reason}", topic=topic, key=key)
        self.topic = topic
        self.key = key
        self.reason = reason
