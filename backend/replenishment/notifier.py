"""
Event Notifier — best-effort publication of stage events.

Delivery is at-most-once from the engine's point of view. ``notify`` only
schedules the publish as a background task; a failure or timeout is
logged as a NotificationFailure and dropped. No retry, no outbox.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from core.exceptions import NotificationFailure
from db.models import ReplenishmentOrder
from integrations.base import EventBus
from replenishment.events import DEFAULT_SOURCE, Stage, envelope, stage_payload

logger = structlog.get_logger()


class EventNotifier:
    def __init__(
        self,
        bus: EventBus,
        source: str = DEFAULT_SOURCE,
        timeout_seconds: float = 5.0,
    ):
        self.bus = bus
        self.source = source
        self.timeout_seconds = timeout_seconds
        self._pending: set[asyncio.Task] = set()
        self.failures: int = 0

    def notify(self, stage: Stage, order: ReplenishmentOrder) -> asyncio.Task | None:
        """Schedule publication of ``stage`` for ``order``; never raises."""
        try:
            payload = envelope(stage, stage_payload(stage, order), source=self.source)
            task = asyncio.get_running_loop().create_task(
                self._publish(stage.topic, order.replenishment_id, payload)
            )
        except Exception as e:  # noqa: BLE001
            self._record_failure(stage.topic, order.replenishment_id, str(e))
            return None

        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _publish(self, topic: str, key: str, payload: dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(self.bus.publish(topic, key, payload), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            self._record_failure(topic, key, f"timed out after {self.timeout_seconds}s")
            return False
        except asyncio.CancelledError:
            self._record_failure(topic, key, "cancelled")
            raise
        except Exception as e:  # noqa: BLE001
            self._record_failure(topic, key, str(e))
            return False

        logger.info("notifier.published", topic=topic, replenishment_id=key, stage=payload["stage"])
        return True

    def _record_failure(self, topic: str, key: str, reason: str) -> None:
        self.failures += 1
        failure = NotificationFailure(topic=topic, key=key, reason=reason)
        logger.warning(
            "notifier.publish_failed",
            code=failure.code,
            topic=topic,
            replenishment_id=key,
            reason=reason,
        )

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for every scheduled publish to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
