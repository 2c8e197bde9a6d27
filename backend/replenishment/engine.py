"""
Replenishment Workflow Engine — the four-stage restocking workflow.

    1. create_low_stock_alert  → ALERT_RAISED     (emits low-stock-alert)
    2. create_transfer_order   → PENDING_PICKING  (reserves warehouse stock)
    3. create_shipment         → IN_TRANSIT       (commits the reservation)
    4. confirm_delivery        → COMPLETED        (adds stock to the store)

Each transition is one unit: precondition check, ledger adjustment, state
advance and audit append run in a single DB transaction; the notifier is
only invoked after commit and cannot fail the operation.

Same-order calls are serialized by an in-process per-order lock and, across
processes, by the order row's version counter: the losing writer's
transaction rolls back and surfaces as InvalidStateTransition.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import timedelta
from functools import partial

import structlog
from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from core.config import Settings, get_settings
from core.exceptions import (
    InvalidStateTransition,
    NotFound,
    PersistenceError,
    ReplenishmentError,
    ValidationError,
)
from db.models import ReplenishmentOrder, StatusHistoryEntry, StoreInventory, utcnow
from inventory.ledger import InventoryLedger
from replenishment.events import Stage
from replenishment.identifiers import (
    new_replenishment_id,
    new_shipment_id,
    new_tracking_number,
    new_transfer_order_id,
)
from replenishment.notifier import EventNotifier
from replenishment.state_machine import (
    ACTIVE_STATUSES,
    OrderStatus,
    Priority,
    apply_transition,
    ensure_transition,
    open_order,
    required_status_for,
)

logger = structlog.get_logger()

Mutation = Callable[[AsyncSession, ReplenishmentOrder], Awaitable[str]]


def requested_quantity_for(current_stock: int, reorder_threshold: int) -> int:
    """Refill to twice the threshold, never less than one unit."""
    return max(1, 2 * reorder_threshold - current_stock)


def _require_text(field: str, value: str | None) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(field, "is required")
    return str(value).strip()


def _require_int(field: str, value, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, "must be an integer")
    if value < minimum:
        raise ValidationError(field, f"must be >= {minimum}")
    return value


def _parse_status(status: str | None) -> OrderStatus | None:
    if status is None:
        return None
    try:
        return OrderStatus(status)
    except ValueError:
        raise ValidationError("status", f"unknown status {status!r}") from None


def _log_detached_outcome(action: str, key: str, task: asyncio.Future) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning(
            "replenishment.detached_unit_failed",
            action=action,
            key=key,
            error_type=type(error).__name__,
            error=str(error),
        )


async def _run_shielded(work: Awaitable, action: str, key: str):
    """
    Run a unit of work that must finish even if the caller is cancelled.

    When the caller goes away first, the unit's eventual error has no reader,
    so it is logged from a done callback instead.
    """
    task = asyncio.ensure_future(work)
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        task.add_done_callback(partial(_log_detached_outcome, action, key))
        raise


class KeyedLocks:
    """asyncio.Lock per key, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


class ReplenishmentWorkflowEngine:
    """
    The only component allowed to mutate order status together with the
    inventory ledger. Built once per process with its collaborators.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: EventNotifier,
        ledger: InventoryLedger | None = None,
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.settings = settings or get_settings()
        self.ledger = ledger or InventoryLedger(self.settings.reservation_retry_attempts)
        self._locks = KeyedLocks()

    # ── Stage 1: low-stock alert ────────────────────────────────────────

    async def create_low_stock_alert(
        self,
        store_id: str,
        product_id: str,
        product_name: str,
        current_stock: int,
        reorder_threshold: int,
        requested_quantity: int | None = None,
        actor: str | None = None,
        priority: str = Priority.NORMAL.value,
        notes: str | None = None,
        skip_if_active: bool = False,
    ) -> ReplenishmentOrder | None:
        """
        Open an ALERT_RAISED order.

        With ``skip_if_active`` the store/product pair is locked and checked
        for an active order inside the same transaction; None is returned
        when one already exists.
        """
        store_id = _require_text("store_id", store_id)
        product_id = _require_text("product_id", product_id)
        product_name = _require_text("product_name", product_name)
        current_stock = _require_int("current_stock", current_stock, 0)
        reorder_threshold = _require_int("reorder_threshold", reorder_threshold, 0)
        if requested_quantity is None:
            quantity = requested_quantity_for(current_stock, reorder_threshold)
        else:
            quantity = _require_int("requested_quantity", requested_quantity, 1)
        try:
            priority = Priority(priority).value
        except ValueError:
            raise ValidationError("priority", f"unknown priority {priority!r}") from None
        actor = actor or self.settings.alert_actor

        now = utcnow()
        order = ReplenishmentOrder(
            replenishment_id=new_replenishment_id(),
            store_id=store_id,
            product_id=product_id,
            product_name=product_name,
            current_stock=current_stock,
            reorder_threshold=reorder_threshold,
            requested_quantity=quantity,
            priority=priority,
            notes=notes,
            alert_triggered_at=now,
            alert_triggered_by=actor,
            created_at=now,
            updated_at=now,
        )
        open_order(
            order,
            actor=actor,
            note=f"Low stock alert created. Current: {current_stock}, Threshold: {reorder_threshold}",
        )

        async def _insert() -> bool:
            try:
                async with self.session_factory() as db:
                    async with db.begin():
                        if skip_if_active and await self._has_active_order(db, store_id, product_id):
                            return False
                        db.add(order)
            except SQLAlchemyError as e:
                logger.error("replenishment.alert_persist_failed", store_id=store_id, product_id=product_id, error=str(e))
                raise PersistenceError(f"Could not persist alert: {e}") from e
            return True

        async def _persist() -> ReplenishmentOrder | None:
            if skip_if_active:
                async with self._locks.hold(f"{store_id}/{product_id}"):
                    inserted = await _insert()
            else:
                inserted = await _insert()
            if not inserted:
                logger.info("replenishment.alert_skipped_active_order", store_id=store_id, product_id=product_id)
                return None

            logger.info(
                "replenishment.alert_raised",
                replenishment_id=order.replenishment_id,
                store_id=store_id,
                product_id=product_id,
                requested_quantity=quantity,
            )
            self.notifier.notify(Stage.LOW_STOCK_ALERT, order)
            return order

        return await _run_shielded(_persist(), OrderStatus.ALERT_RAISED.value, order.replenishment_id)

    async def _has_active_order(self, db: AsyncSession, store_id: str, product_id: str) -> bool:
        # Row lock on the store record serializes alerting across processes.
        await db.execute(
            select(StoreInventory.id)
            .where(StoreInventory.store_id == store_id, StoreInventory.product_id == product_id)
            .with_for_update()
        )
        result = await db.execute(
            select(
                exists().where(
                    ReplenishmentOrder.store_id == store_id,
                    ReplenishmentOrder.product_id == product_id,
                    ReplenishmentOrder.status.in_([s.value for s in ACTIVE_STATUSES]),
                )
            )
        )
        return bool(result.scalar())

    # ── Stage 2: transfer order ─────────────────────────────────────────

    async def create_transfer_order(
        self,
        replenishment_id: str,
        warehouse_id: str | None = None,
        actor: str | None = None,
    ) -> ReplenishmentOrder:
        replenishment_id = _require_text("replenishment_id", replenishment_id)
        warehouse_id = (warehouse_id or "").strip() or self.settings.default_warehouse_id
        actor = actor or self.settings.transfer_actor

        async def _reserve(db: AsyncSession, order: ReplenishmentOrder) -> str:
            reservation = await self.ledger.reserve_warehouse_stock(
                db, warehouse_id, order.product_id, order.requested_quantity
            )
            order.transfer_order_id = new_transfer_order_id()
            order.warehouse_id = warehouse_id
            order.warehouse_available_stock = reservation.available_before
            order.transfer_quantity = reservation.reserved_quantity
            order.transfer_order_created_at = utcnow()
            order.transfer_order_created_by = actor
            if reservation.is_partial:
                logger.warning(
                    "replenishment.partial_fulfillment",
                    replenishment_id=order.replenishment_id,
                    requested=reservation.requested_quantity,
                    reserved=reservation.reserved_quantity,
                    warehouse_id=warehouse_id,
                )
            return "Transfer order created and ready for picking"

        return await self._transition(
            replenishment_id, OrderStatus.PENDING_PICKING, actor, _reserve, Stage.TRANSFER_ORDER_CREATED
        )

    # ── Stage 3: shipment ───────────────────────────────────────────────

    async def create_shipment(
        self,
        replenishment_id: str,
        carrier: str | None = None,
        estimated_delivery_days: int | None = None,
        actor: str | None = None,
    ) -> ReplenishmentOrder:
        replenishment_id = _require_text("replenishment_id", replenishment_id)
        carrier = (carrier or "").strip() or self.settings.default_carrier
        if estimated_delivery_days is None:
            days = self.settings.default_estimated_delivery_days
        else:
            days = _require_int("estimated_delivery_days", estimated_delivery_days, 1)
            if days > self.settings.max_estimated_delivery_days:
                raise ValidationError(
                    "estimated_delivery_days", f"must be <= {self.settings.max_estimated_delivery_days}"
                )
        actor = actor or self.settings.shipment_actor

        async def _ship(db: AsyncSession, order: ReplenishmentOrder) -> str:
            now = utcnow()
            order.shipment_id = new_shipment_id()
            order.tracking_number = new_tracking_number()
            order.carrier = carrier
            order.shipped_at = now
            order.shipped_by = actor
            order.shipped_quantity = order.transfer_quantity
            order.estimated_delivery_at = now + timedelta(days=days)
            await self.ledger.commit_warehouse_shipment(
                db, order.warehouse_id, order.product_id, order.shipped_quantity
            )
            return f"Package shipped via {carrier}"

        return await self._transition(
            replenishment_id, OrderStatus.IN_TRANSIT, actor, _ship, Stage.SHIPMENT_DISPATCHED
        )

    # ── Stage 4: delivery ───────────────────────────────────────────────

    async def confirm_delivery(
        self,
        replenishment_id: str,
        received_quantity: int | None = None,
        received_by: str | None = None,
    ) -> ReplenishmentOrder:
        replenishment_id = _require_text("replenishment_id", replenishment_id)
        if received_quantity is not None:
            received_quantity = _require_int("received_quantity", received_quantity, 0)
        actor = (received_by or "").strip() or self.settings.receiving_actor

        async def _receive(db: AsyncSession, order: ReplenishmentOrder) -> str:
            quantity = order.shipped_quantity if received_quantity is None else received_quantity
            level = await self.ledger.adjust_store_stock(
                db, order.store_id, order.product_id, quantity, replenished=True
            )
            order.received_quantity = quantity
            order.received_at = utcnow()
            order.received_by = actor
            order.new_stock_level = level.current_stock
            return "Stock received and inventory updated"

        return await self._transition(
            replenishment_id, OrderStatus.COMPLETED, actor, _receive, Stage.STOCK_RECEIVED
        )

    # ── Administrative exits ────────────────────────────────────────────

    async def cancel_order(self, replenishment_id: str, reason: str, actor: str = "ADMIN") -> ReplenishmentOrder:
        """Cancel an active order, releasing any warehouse reservation it holds."""
        replenishment_id = _require_text("replenishment_id", replenishment_id)
        reason = _require_text("reason", reason)

        async def _cancel(db: AsyncSession, order: ReplenishmentOrder) -> str:
            if order.status == OrderStatus.PENDING_PICKING.value and order.transfer_quantity:
                await self.ledger.release_warehouse_reservation(
                    db, order.warehouse_id, order.product_id, order.transfer_quantity
                )
            order.cancelled_at = utcnow()
            order.cancellation_reason = reason
            return reason

        return await self._transition(replenishment_id, OrderStatus.CANCELLED, actor, _cancel, None)

    async def fail_order(self, replenishment_id: str, reason: str, actor: str = "ADMIN") -> ReplenishmentOrder:
        """Mark an active order FAILED. Inventory is left as it stands."""
        replenishment_id = _require_text("replenishment_id", replenishment_id)
        reason = _require_text("reason", reason)

        async def _fail(db: AsyncSession, order: ReplenishmentOrder) -> str:
            order.cancellation_reason = reason
            return reason

        return await self._transition(replenishment_id, OrderStatus.FAILED, actor, _fail, None)

    # ── Transition unit ─────────────────────────────────────────────────

    async def _transition(
        self,
        replenishment_id: str,
        target: OrderStatus,
        actor: str,
        mutate: Mutation,
        stage: Stage | None,
    ) -> ReplenishmentOrder:
        async def _unit() -> ReplenishmentOrder:
            async with self._locks.hold(replenishment_id):
                order = await self._commit_transition(replenishment_id, target, actor, mutate)
            logger.info(
                "replenishment.transitioned",
                replenishment_id=replenishment_id,
                status=order.status,
                actor=actor,
            )
            if stage is not None:
                self.notifier.notify(stage, order)
            return order

        # A caller cancelled mid-flight must not abort a transaction that is already committing.
        return await _run_shielded(_unit(), target.value, replenishment_id)

    async def _commit_transition(
        self,
        replenishment_id: str,
        target: OrderStatus,
        actor: str,
        mutate: Mutation,
    ) -> ReplenishmentOrder:
        try:
            async with self.session_factory() as db:
                async with db.begin():
                    order = await self._load_order(db, replenishment_id, for_update=True)
                    ensure_transition(order, target)
                    detail = await mutate(db, order)
                    apply_transition(order, target, actor, detail)
            return order
        except StaleDataError:
            current = await self._current_status(replenishment_id)
            logger.warning(
                "replenishment.concurrent_transition",
                replenishment_id=replenishment_id,
                target=target.value,
                current=current,
            )
            raise InvalidStateTransition(
                replenishment_id,
                current_status=current,
                required_status=required_status_for(target),
                target_status=target.value,
            ) from None
        except ReplenishmentError as e:
            logger.info(
                "replenishment.transition_rejected",
                replenishment_id=replenishment_id,
                target=target.value,
                code=e.code,
                detail=e.message,
            )
            raise
        except IntegrityError as e:
            logger.error("replenishment.integrity_error", replenishment_id=replenishment_id, error=str(e))
            raise PersistenceError(f"Integrity check failed for {replenishment_id}: {e.orig}") from e
        except SQLAlchemyError as e:
            logger.error("replenishment.persistence_error", replenishment_id=replenishment_id, error=str(e))
            raise PersistenceError(f"Could not update {replenishment_id}: {e}") from e

    async def _load_order(
        self,
        db: AsyncSession,
        replenishment_id: str,
        for_update: bool = False,
    ) -> ReplenishmentOrder:
        query = (
            select(ReplenishmentOrder)
            .where(ReplenishmentOrder.replenishment_id == replenishment_id)
            .options(selectinload(ReplenishmentOrder.status_history))
        )
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFound("ReplenishmentOrder", replenishment_id)
        return order

    async def _current_status(self, replenishment_id: str) -> str:
        async with self.session_factory() as db:
            result = await db.execute(
                select(ReplenishmentOrder.status).where(ReplenishmentOrder.replenishment_id == replenishment_id)
            )
            return result.scalar_one_or_none() or "<missing>"

    # ── Read queries ────────────────────────────────────────────────────

    async def get_order(self, replenishment_id: str) -> ReplenishmentOrder:
        try:
            async with self.session_factory() as db:
                return await self._load_order(db, replenishment_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not read {replenishment_id}: {e}") from e

    async def get_order_history(self, replenishment_id: str) -> list[StatusHistoryEntry]:
        order = await self.get_order(replenishment_id)
        return list(order.status_history)

    async def list_orders_by_store(self, store_id: str, status: str | None = None) -> list[ReplenishmentOrder]:
        wanted = _parse_status(status)
        conditions = [ReplenishmentOrder.store_id == store_id]
        if wanted is not None:
            conditions.append(ReplenishmentOrder.status == wanted.value)
        return await self._list_orders(*conditions)

    async def list_orders_by_product(self, product_id: str, status: str | None = None) -> list[ReplenishmentOrder]:
        wanted = _parse_status(status)
        conditions = [ReplenishmentOrder.product_id == product_id]
        if wanted is not None:
            conditions.append(ReplenishmentOrder.status == wanted.value)
        return await self._list_orders(*conditions)

    async def list_active_orders(self) -> list[ReplenishmentOrder]:
        return await self._list_orders(ReplenishmentOrder.status.in_([s.value for s in ACTIVE_STATUSES]))

    async def _list_orders(self, *conditions) -> list[ReplenishmentOrder]:
        query = (
            select(ReplenishmentOrder)
            .where(*conditions)
            .options(selectinload(ReplenishmentOrder.status_history))
            .order_by(ReplenishmentOrder.created_at.desc(), ReplenishmentOrder.replenishment_id.desc())
        )
        try:
            async with self.session_factory() as db:
                result = await db.execute(query)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not list orders: {e}") from e
