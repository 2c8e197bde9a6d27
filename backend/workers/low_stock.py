"""
Low-Stock Scan Worker — scheduled stage-1 alert raising.

Runs the alert engine over store inventory and opens a replenishment order
for every item at or below threshold that has no active order yet.
"""

from __future__ import annotations

import asyncio

import structlog

from workers.celery_app import celery_app

logger = structlog.get_logger()


@celery_app.task(
    name="workers.low_stock.scan_low_stock",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def scan_low_stock(self, store_id: str | None = None):
    """Raise low-stock alerts, optionally for a single store."""
    from alerts.engine import raise_low_stock_alerts
    from core.config import get_settings
    from core.logging import configure_logging
    from replenishment.runtime import build_runtime

    run_id = self.request.id or "manual"

    async def _scan():
        settings = get_settings()
        configure_logging(settings)
        runtime = await build_runtime(settings)
        try:
            summary = await raise_low_stock_alerts(runtime.workflow, store_id=store_id)
        finally:
            await runtime.close()
        summary.update(status="success", run_id=run_id, store_id=store_id)
        return summary

    try:
        return asyncio.run(_scan())
    except Exception as exc:  # noqa: BLE001
        logger.error("low_stock.scan_failed", store_id=store_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
