"""
Alert Engine — low-stock detection and alert raising.

Scans store inventory for records at or below their reorder threshold and
opens a replenishment order (stage 1) for each one that does not already
have an active order. Run by the Celery beat scan and on demand.

Priority rules:
  - URGENT: shelf is empty
  - HIGH:   at or below half the reorder threshold
  - NORMAL: otherwise
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import and_, exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import ReplenishmentError
from db.models import ReplenishmentOrder, StoreInventory
from replenishment.engine import ReplenishmentWorkflowEngine
from replenishment.state_machine import ACTIVE_STATUSES, Priority

logger = structlog.get_logger()


def classify_priority(current_stock: int, reorder_threshold: int) -> Priority:
    """Classify alert priority from how far stock has fallen."""
    if current_stock <= 0:
        return Priority.URGENT
    if current_stock * 2 <= reorder_threshold:
        return Priority.HIGH
    return Priority.NORMAL


def _active_order_exists():
    return exists().where(
        and_(
            ReplenishmentOrder.store_id == StoreInventory.store_id,
            ReplenishmentOrder.product_id == StoreInventory.product_id,
            ReplenishmentOrder.status.in_([s.value for s in ACTIVE_STATUSES]),
        )
    )


async def find_low_stock_items(
    db: AsyncSession,
    store_id: str | None = None,
    exclude_active: bool = True,
) -> list[StoreInventory]:
    """Store inventory at or below threshold, most depleted first."""
    query = select(StoreInventory).where(StoreInventory.current_stock <= StoreInventory.reorder_threshold)
    if store_id:
        query = query.where(StoreInventory.store_id == store_id)
    if exclude_active:
        query = query.where(~_active_order_exists())
    query = query.order_by(StoreInventory.current_stock, StoreInventory.store_id, StoreInventory.product_id)
    result = await db.execute(query)
    return list(result.scalars().all())


async def raise_low_stock_alerts(
    workflow: ReplenishmentWorkflowEngine,
    store_id: str | None = None,
    actor: str | None = None,
) -> dict[str, Any]:
    """
    Open an ALERT_RAISED order for every low-stock item without one.

    A failure on one item is logged and counted; the scan continues.
    """
    actor = actor or workflow.settings.low_stock_scan_actor
    async with workflow.session_factory() as db:
        items = await find_low_stock_items(db, store_id=store_id)

    created: list[str] = []
    skipped = 0
    failed = 0
    for item in items:
        try:
            order = await workflow.create_low_stock_alert(
                store_id=item.store_id,
                product_id=item.product_id,
                product_name=item.product_name,
                current_stock=item.current_stock,
                reorder_threshold=item.reorder_threshold,
                actor=actor,
                priority=classify_priority(item.current_stock, item.reorder_threshold).value,
                skip_if_active=True,
            )
        except ReplenishmentError as e:
            failed += 1
            logger.warning(
                "alerts.low_stock_alert_failed",
                store_id=item.store_id,
                product_id=item.product_id,
                code=e.code,
                error=e.message,
            )
            continue
        # another scan opened an order since the read
        if order is None:
            skipped += 1
        else:
            created.append(order.replenishment_id)

    summary = {
        "scanned": len(items),
        "alerts_created": len(created),
        "skipped": skipped,
        "failed": failed,
        "replenishment_ids": created,
    }
    logger.info(
        "alerts.low_stock_scan_complete",
        store_id=store_id,
        scanned=len(items),
        alerts_created=len(created),
        skipped=skipped,
        failed=failed,
    )
    return summary
