"""
Inventory Ledger — store and warehouse stock counters.

Every primitive is a single conditional UPDATE issued inside the caller's
transaction, so the read-modify-write on one keyed record is atomic and a
failure later in the same transaction rolls the adjustment back.

Warehouse counters move in pairs to keep total == available + reserved
(also enforced by the ck_warehouse_balance CHECK constraint):

    reserve  : available -= q, reserved += q
    commit   : reserved  -= q, total    -= q
    release  : reserved  -= q, available += q
    restock  : total     += q, available += q
"""

from dataclasses import dataclass

import structlog
from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import (
    ConcurrencyConflict,
    InsufficientStock,
    InventoryInvariantViolation,
    NotFound,
    ValidationError,
)
from db.models import StoreInventory, WarehouseInventory, utcnow

logger = structlog.get_logger()


@dataclass(frozen=True)
class StockLevel:
    """Result of a store stock adjustment."""

    store_id: str
    product_id: str
    previous_stock: int
    current_stock: int
    reorder_threshold: int

    @property
    def needs_replenishment(self) -> bool:
        return self.current_stock <= self.reorder_threshold


@dataclass(frozen=True)
class Reservation:
    """Result of a warehouse reservation."""

    warehouse_id: str
    product_id: str
    requested_quantity: int
    reserved_quantity: int
    available_before: int

    @property
    def is_partial(self) -> bool:
        return self.reserved_quantity < self.requested_quantity


@dataclass(frozen=True)
class WarehouseLevel:
    warehouse_id: str
    product_id: str
    total_stock: int
    available_stock: int
    reserved_stock: int


def _store_key(store_id: str, product_id: str):
    return (StoreInventory.store_id == store_id, StoreInventory.product_id == product_id)


def _warehouse_key(warehouse_id: str, product_id: str):
    return (WarehouseInventory.warehouse_id == warehouse_id, WarehouseInventory.product_id == product_id)


class InventoryLedger:
    """Atomic adjustments over store_inventory and warehouse_inventory."""

    def __init__(self, reservation_retry_attempts: int = 5):
        self.reservation_retry_attempts = max(1, reservation_retry_attempts)

    # ── Reads ────────────────────────────────────────────────────────────

    async def get_store_record(self, db: AsyncSession, store_id: str, product_id: str) -> StoreInventory:
        result = await db.execute(
            select(StoreInventory)
            .where(*_store_key(store_id, product_id))
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFound("StoreInventory", f"{store_id}/{product_id}")
        return record

    async def get_warehouse_record(self, db: AsyncSession, warehouse_id: str, product_id: str) -> WarehouseInventory:
        result = await db.execute(
            select(WarehouseInventory)
            .where(*_warehouse_key(warehouse_id, product_id))
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFound("WarehouseInventory", f"{warehouse_id}/{product_id}")
        return record

    async def list_store_inventory(
        self,
        db: AsyncSession,
        store_id: str | None = None,
        product_id: str | None = None,
        low_stock_only: bool = False,
    ) -> list[StoreInventory]:
        query = select(StoreInventory)
        if store_id:
            query = query.where(StoreInventory.store_id == store_id)
        if product_id:
            query = query.where(StoreInventory.product_id == product_id)
        if low_stock_only:
            query = query.where(StoreInventory.current_stock <= StoreInventory.reorder_threshold)
            query = query.order_by(StoreInventory.current_stock, StoreInventory.store_id)
        else:
            query = query.order_by(StoreInventory.store_id, StoreInventory.product_name)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def list_warehouse_inventory(self, db: AsyncSession, warehouse_id: str) -> list[WarehouseInventory]:
        result = await db.execute(
            select(WarehouseInventory)
            .where(WarehouseInventory.warehouse_id == warehouse_id)
            .order_by(WarehouseInventory.product_name)
        )
        return list(result.scalars().all())

    async def _store_counters(self, db: AsyncSession, store_id: str, product_id: str):
        result = await db.execute(
            select(StoreInventory.current_stock, StoreInventory.reorder_threshold).where(
                *_store_key(store_id, product_id)
            )
        )
        row = result.one_or_none()
        if row is None:
            raise NotFound("StoreInventory", f"{store_id}/{product_id}")
        return row

    async def _warehouse_counters(self, db: AsyncSession, warehouse_id: str, product_id: str):
        result = await db.execute(
            select(
                WarehouseInventory.total_stock,
                WarehouseInventory.available_stock,
                WarehouseInventory.reserved_stock,
            ).where(*_warehouse_key(warehouse_id, product_id))
        )
        row = result.one_or_none()
        if row is None:
            raise NotFound("WarehouseInventory", f"{warehouse_id}/{product_id}")
        return row

    # ── Store stock ──────────────────────────────────────────────────────

    async def adjust_store_stock(
        self,
        db: AsyncSession,
        store_id: str,
        product_id: str,
        delta: int,
        replenished: bool = False,
    ) -> StockLevel:
        """current_stock = max(0, current_stock + delta)."""
        before = await self._store_counters(db, store_id, product_id)
        now = utcnow()
        values = {
            "current_stock": case(
                (StoreInventory.current_stock + delta < 0, 0),
                else_=StoreInventory.current_stock + delta,
            ),
            "last_stock_update": now,
            "updated_at": now,
        }
        if replenished:
            values["last_replenishment_at"] = now

        await db.execute(
            update(StoreInventory)
            .where(*_store_key(store_id, product_id))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        after = await self._store_counters(db, store_id, product_id)
        level = StockLevel(
            store_id=store_id,
            product_id=product_id,
            previous_stock=before.current_stock,
            current_stock=after.current_stock,
            reorder_threshold=after.reorder_threshold,
        )
        logger.info(
            "ledger.store_adjusted",
            store_id=store_id,
            product_id=product_id,
            delta=delta,
            current_stock=level.current_stock,
            needs_replenishment=level.needs_replenishment,
        )
        return level

    async def set_store_stock(self, db: AsyncSession, store_id: str, product_id: str, quantity: int) -> StockLevel:
        """Administrative absolute set, floored at zero."""
        before = await self._store_counters(db, store_id, product_id)
        now = utcnow()
        await db.execute(
            update(StoreInventory)
            .where(*_store_key(store_id, product_id))
            .values(current_stock=max(0, quantity), last_stock_update=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return StockLevel(
            store_id=store_id,
            product_id=product_id,
            previous_stock=before.current_stock,
            current_stock=max(0, quantity),
            reorder_threshold=before.reorder_threshold,
        )

    # ── Warehouse stock ──────────────────────────────────────────────────

    async def reserve_warehouse_stock(
        self,
        db: AsyncSession,
        warehouse_id: str,
        product_id: str,
        quantity: int,
    ) -> Reservation:
        """
        Reserve up to ``quantity`` units, clamped to what is available.

        Compare-and-set on available_stock: if another transaction moved
        the counter between our read and our write, re-read and retry.
        """
        if quantity < 1:
            raise ValidationError("quantity", "must be >= 1")

        for attempt in range(1, self.reservation_retry_attempts + 1):
            row = await self._warehouse_counters(db, warehouse_id, product_id)
            available = row.available_stock
            if available <= 0:
                raise InsufficientStock(warehouse_id, product_id, available=available, requested=quantity)

            reserve_qty = min(quantity, available)
            result = await db.execute(
                update(WarehouseInventory)
                .where(
                    *_warehouse_key(warehouse_id, product_id),
                    WarehouseInventory.available_stock == available,
                )
                .values(
                    available_stock=WarehouseInventory.available_stock - reserve_qty,
                    reserved_stock=WarehouseInventory.reserved_stock + reserve_qty,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                reservation = Reservation(
                    warehouse_id=warehouse_id,
                    product_id=product_id,
                    requested_quantity=quantity,
                    reserved_quantity=reserve_qty,
                    available_before=available,
                )
                logger.info(
                    "ledger.reserved",
                    warehouse_id=warehouse_id,
                    product_id=product_id,
                    requested=quantity,
                    reserved=reserve_qty,
                    available_before=available,
                )
                return reservation

            logger.debug("ledger.reserve_conflict", warehouse_id=warehouse_id, product_id=product_id, attempt=attempt)

        raise ConcurrencyConflict(
            f"Could not reserve {product_id} at {warehouse_id} after {self.reservation_retry_attempts} attempts",
            warehouse_id=warehouse_id,
            product_id=product_id,
        )

    async def commit_warehouse_shipment(
        self,
        db: AsyncSession,
        warehouse_id: str,
        product_id: str,
        quantity: int,
    ) -> WarehouseLevel:
        """Reserved stock leaves the building: reserved -= q, total -= q."""
        await self._warehouse_counters(db, warehouse_id, product_id)
        result = await db.execute(
            update(WarehouseInventory)
            .where(
                *_warehouse_key(warehouse_id, product_id),
                WarehouseInventory.reserved_stock >= quantity,
                WarehouseInventory.total_stock >= quantity,
            )
            .values(
                reserved_stock=WarehouseInventory.reserved_stock - quantity,
                total_stock=WarehouseInventory.total_stock - quantity,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InventoryInvariantViolation(
                f"Reserved stock for {product_id} at {warehouse_id} is below {quantity}",
                warehouse_id=warehouse_id,
                product_id=product_id,
                quantity=quantity,
            )
        return await self._level(db, warehouse_id, product_id, "ledger.shipment_committed", quantity)

    async def release_warehouse_reservation(
        self,
        db: AsyncSession,
        warehouse_id: str,
        product_id: str,
        quantity: int,
    ) -> WarehouseLevel:
        """Return a reservation to available stock: reserved -= q, available += q."""
        await self._warehouse_counters(db, warehouse_id, product_id)
        result = await db.execute(
            update(WarehouseInventory)
            .where(
                *_warehouse_key(warehouse_id, product_id),
                WarehouseInventory.reserved_stock >= quantity,
            )
            .values(
                reserved_stock=WarehouseInventory.reserved_stock - quantity,
                available_stock=WarehouseInventory.available_stock + quantity,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InventoryInvariantViolation(
                f"Reserved stock for {product_id} at {warehouse_id} is below {quantity}",
                warehouse_id=warehouse_id,
                product_id=product_id,
                quantity=quantity,
            )
        return await self._level(db, warehouse_id, product_id, "ledger.reservation_released", quantity)

    async def restock_warehouse(
        self,
        db: AsyncSession,
        warehouse_id: str,
        product_id: str,
        quantity: int,
    ) -> WarehouseLevel:
        """Goods received at the warehouse: total += q, available += q."""
        if quantity < 1:
            raise ValidationError("quantity", "must be >= 1")
        await self._warehouse_counters(db, warehouse_id, product_id)
        now = utcnow()
        await db.execute(
            update(WarehouseInventory)
            .where(*_warehouse_key(warehouse_id, product_id))
            .values(
                total_stock=WarehouseInventory.total_stock + quantity,
                available_stock=WarehouseInventory.available_stock + quantity,
                last_restocked_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return await self._level(db, warehouse_id, product_id, "ledger.restocked", quantity)

    async def _level(self, db: AsyncSession, warehouse_id: str, product_id: str, event: str, quantity: int):
        row = await self._warehouse_counters(db, warehouse_id, product_id)
        level = WarehouseLevel(
            warehouse_id=warehouse_id,
            product_id=product_id,
            total_stock=row.total_stock,
            available_stock=row.available_stock,
            reserved_stock=row.reserved_stock,
        )
        logger.info(
            event,
            warehouse_id=warehouse_id,
            product_id=product_id,
            quantity=quantity,
            total=level.total_stock,
            available=level.available_stock,
            reserved=level.reserved_stock,
        )
        return level
