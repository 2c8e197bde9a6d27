"""
Sentry Database Models

Tables:
  Master data:
  1. stores                        - Physical store locations
  2. warehouses                    - Distribution warehouses

  Inventory ledger:
  3. store_inventory               - Per store/product shelf stock
  4. warehouse_inventory           - Per warehouse/product total/available/reserved

  Replenishment workflow:
  5. replenishment_orders          - One row per replenishment order (the state machine)
  6. replenishment_status_history  - Append-only audit trail (the digital thread)
"""

from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from db.session import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─── 1. Stores ─────────────────────────────────────────────────────────────


class Store(Base):
    __tablename__ = "stores"

    store_id = Column(String(64), primary_key=True)
    store_name = Column(String(255), nullable=False)
    city = Column(String(100))
    state = Column(String(50))
    zip_code = Column(String(20))
    manager_name = Column(String(255))
    contact_email = Column(String(255))
    status = Column(String(20), nullable=False, default="ACTIVE")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('ACTIVE', 'INACTIVE', 'MAINTENANCE')", name="ck_store_status"),
    )


# ─── 2. Warehouses ─────────────────────────────────────────────────────────


class Warehouse(Base):
    __tablename__ = "warehouses"

    warehouse_id = Column(String(64), primary_key=True)
    warehouse_name = Column(String(255), nullable=False)
    city = Column(String(100))
    state = Column(String(50))
    capacity = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="ACTIVE")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("capacity >= 0", name="ck_warehouse_capacity"),
        CheckConstraint("status IN ('ACTIVE', 'INACTIVE', 'MAINTENANCE')", name="ck_warehouse_status"),
    )


# ─── 3. Store Inventory ────────────────────────────────────────────────────


class StoreInventory(Base):
    __tablename__ = "store_inventory"

    id = Column(Integer, primary_key=True, autoincrement=True)
    store_id = Column(String(64), nullable=False)
    product_id = Column(String(64), nullable=False)
    product_name = Column(String(255), nullable=False)
    product_category = Column(String(100), nullable=False)
    current_stock = Column(Integer, nullable=False, default=0)
    reorder_threshold = Column(Integer, nullable=False, default=10)
    max_stock_level = Column(Integer, nullable=False, default=100)
    unit_cost = Column(Float, nullable=False)
    last_stock_update = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_replenishment_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("store_id", "product_id", name="uq_store_inventory_key"),
        CheckConstraint("current_stock >= 0", name="ck_store_inventory_stock"),
        CheckConstraint("reorder_threshold >= 0", name="ck_store_inventory_threshold"),
        CheckConstraint("max_stock_level >= 0", name="ck_store_inventory_max"),
        CheckConstraint("unit_cost >= 0", name="ck_store_inventory_cost"),
        Index("ix_store_inventory_store", "store_id"),
    )

    @property
    def needs_replenishment(self) -> bool:
        return self.current_stock <= self.reorder_threshold


# ─── 4. Warehouse Inventory ────────────────────────────────────────────────


class WarehouseInventory(Base):
    __tablename__ = "warehouse_inventory"

    id = Column(Integer, primary_key=True, autoincrement=True)
    warehouse_id = Column(String(64), nullable=False)
    product_id = Column(String(64), nullable=False)
    product_name = Column(String(255), nullable=False)
    total_stock = Column(Integer, nullable=False, default=0)
    available_stock = Column(Integer, nullable=False, default=0)
    reserved_stock = Column(Integer, nullable=False, default=0)
    unit_cost = Column(Float, nullable=False, default=0.0)
    last_restocked_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("warehouse_id", "product_id", name="uq_warehouse_inventory_key"),
        CheckConstraint("available_stock >= 0", name="ck_warehouse_available"),
        CheckConstraint("reserved_stock >= 0", name="ck_warehouse_reserved"),
        CheckConstraint("total_stock >= 0", name="ck_warehouse_total"),
        CheckConstraint("total_stock = available_stock + reserved_stock", name="ck_warehouse_balance"),
        CheckConstraint("unit_cost >= 0", name="ck_warehouse_cost"),
        Index("ix_warehouse_inventory_warehouse", "warehouse_id"),
    )


# ─── 5. Replenishment Orders ───────────────────────────────────────────────


class ReplenishmentOrder(Base):
    __tablename__ = "replenishment_orders"

    replenishment_id = Column(String(64), primary_key=True)
    store_id = Column(String(64), nullable=False)
    product_id = Column(String(64), nullable=False)
    product_name = Column(String(255), nullable=False)
    current_stock = Column(Integer, nullable=False)
    reorder_threshold = Column(Integer, nullable=False)
    requested_quantity = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="ALERT_RAISED")
    priority = Column(String(10), nullable=False, default="NORMAL")
    notes = Column(Text)

    # Stage 1: low-stock alert
    alert_triggered_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    alert_triggered_by = Column(String(100), nullable=False)

    # Stage 2: transfer order
    transfer_order_id = Column(String(64), unique=True)
    warehouse_id = Column(String(64))
    warehouse_available_stock = Column(Integer)
    transfer_quantity = Column(Integer)
    transfer_order_created_at = Column(DateTime(timezone=True))
    transfer_order_created_by = Column(String(100))

    # Stage 3: shipment
    shipment_id = Column(String(64), unique=True)
    tracking_number = Column(String(64), unique=True)
    carrier = Column(String(50))
    shipped_quantity = Column(Integer)
    estimated_delivery_at = Column(DateTime(timezone=True))
    shipped_at = Column(DateTime(timezone=True))
    shipped_by = Column(String(100))

    # Stage 4: receipt at store
    received_quantity = Column(Integer)
    received_at = Column(DateTime(timezone=True))
    received_by = Column(String(100))
    new_stock_level = Column(Integer)

    # Administrative exits
    cancelled_at = Column(DateTime(timezone=True))
    cancellation_reason = Column(Text)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version = Column(Integer, nullable=False)

    status_history = relationship(
        "StatusHistoryEntry",
        back_populates="order",
        order_by="StatusHistoryEntry.sequence",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "status IN ('ALERT_RAISED', 'PENDING_PICKING', 'IN_TRANSIT', 'COMPLETED', 'CANCELLED', 'FAILED')",
            name="ck_replenishment_status",
        ),
        CheckConstraint("priority IN ('LOW', 'NORMAL', 'HIGH', 'URGENT')", name="ck_replenishment_priority"),
        CheckConstraint("requested_quantity >= 1", name="ck_replenishment_requested"),
        CheckConstraint("current_stock >= 0", name="ck_replenishment_current_stock"),
        CheckConstraint("reorder_threshold >= 0", name="ck_replenishment_threshold"),
        Index("ix_replenishment_store_status", "store_id", "status"),
        Index("ix_replenishment_product_status", "product_id", "status"),
        Index("ix_replenishment_created", "created_at"),
    )


# ─── 6. Status History ─────────────────────────────────────────────────────


class StatusHistoryEntry(Base):
    __tablename__ = "replenishment_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    replenishment_id = Column(
        String(64),
        ForeignKey("replenishment_orders.replenishment_id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    actor = Column(String(100), nullable=False)
    note = Column(Text)

    order = relationship("ReplenishmentOrder", back_populates="status_history")

    __table_args__ = (
        UniqueConstraint("replenishment_id", "sequence", name="uq_status_history_sequence"),
    )
