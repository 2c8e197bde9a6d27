"""
Replenishment Router — the four workflow stages and order queries.

  1. POST /alerts           → ALERT_RAISED
  2. POST /transfer-orders  → PENDING_PICKING
  3. POST /shipments        → IN_TRANSIT
  4. POST /deliveries       → COMPLETED

Domain errors propagate to the app-level handler, which maps them to
404/409/422/503 with a ``{"error", "detail", ...}`` body.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from api.deps import get_workflow_engine
from replenishment.engine import ReplenishmentWorkflowEngine
from replenishment.state_machine import Priority

router = APIRouter(prefix="/api/v1/replenishment", tags=["replenishment"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class AlertCreate(BaseModel):
    store_id: str = Field(..., min_length=1)
    product_id: str = Field(..., min_length=1)
    product_name: str = Field(..., min_length=1)
    current_stock: int = Field(..., ge=0)
    reorder_threshold: int = Field(..., ge=0)
    requested_quantity: int | None = Field(None, ge=1)
    priority: Priority = Priority.NORMAL
    notes: str | None = None
    triggered_by: str | None = None


class TransferOrderCreate(BaseModel):
    replenishment_id: str = Field(..., min_length=1)
    warehouse_id: str | None = None
    created_by: str | None = None


class ShipmentCreate(BaseModel):
    replenishment_id: str = Field(..., min_length=1)
    carrier: str | None = None
    estimated_delivery_days: int | None = Field(None, ge=1)
    shipped_by: str | None = None


class DeliveryConfirm(BaseModel):
    replenishment_id: str = Field(..., min_length=1)
    received_quantity: int | None = Field(None, ge=0)
    received_by: str | None = None


class AdminAction(BaseModel):
    reason: str = Field(..., min_length=1)
    actor: str = "ADMIN"


class HistoryEntryResponse(BaseModel):
    sequence: int
    status: str
    timestamp: datetime
    actor: str
    note: str | None

    model_config = {"from_attributes": True}


class OrderResponse(BaseModel):
    replenishment_id: str
    store_id: str
    product_id: str
    product_name: str
    current_stock: int
    reorder_threshold: int
    requested_quantity: int
    status: str
    priority: str
    notes: str | None
    alert_triggered_at: datetime
    alert_triggered_by: str
    transfer_order_id: str | None
    warehouse_id: str | None
    warehouse_available_stock: int | None
    transfer_quantity: int | None
    transfer_order_created_at: datetime | None
    transfer_order_created_by: str | None
    shipment_id: str | None
    tracking_number: str | None
    carrier: str | None
    shipped_quantity: int | None
    estimated_delivery_at: datetime | None
    shipped_at: datetime | None
    shipped_by: str | None
    received_quantity: int | None
    received_at: datetime | None
    received_by: str | None
    new_stock_level: int | None
    cancelled_at: datetime | None
    cancellation_reason: str | None
    created_at: datetime
    updated_at: datetime
    status_history: list[HistoryEntryResponse]

    model_config = {"from_attributes": True}


# ─── Stage endpoints ─────────────────────────────────────────────────────────


@router.post("/alerts", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_low_stock_alert(
    body: AlertCreate,
    workflow: ReplenishmentWorkflowEngine = Depends(get_workflow_engine),
):
    """Stage 1: raise a low-stock alert and open a replenishment order."""
    return await workflow.create_low_stock_alert(
        store_id=body.store_id,
        product_id=body.product_id,
        product_name=body.product_name,
        current_stock=body.current_stock,
        reorder_threshold=body.reorder_threshold,
        requested_quantity=body.requested_quantity,
        actor=body.triggered_by,
        priority=body.priority.value,
        notes=body.notes,
    )


@router.post("/transfer-orders", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_transfer_order(
    body: TransferOrderCreate,
    workflow: ReplenishmentWorkflowEngine = Depends(get_workflow_engine),
):
    """Stage 2: reserve warehouse stock for the order."""
    return await workflow.create_transfer_order(
        body.replenishment_id,
        warehouse_id=body.warehouse_id,
        actor=body.created_by,
    )


@router.post("/shipments", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_shipment(
    body: ShipmentCreate,
    workflow: ReplenishmentWorkflowEngine = Depends(get_workflow_engine),
):
    """Stage 3: dispatch the reserved stock."""
    return await workflow.create_shipment(
        body.replenishment_id,
        carrier=body.carrier,
        estimated_delivery_days=body.estimated_delivery_days,
        actor=body.shipped_by,
    )


@router.post("/deliveries", response_model=OrderResponse)
async def confirm_delivery(
    body: DeliveryConfirm,
    workflow: ReplenishmentWorkflowEngine = Depends(get_workflow_engine),
):
    """Stage 4: receive the shipment into store stock."""
    return await workflow.confirm_delivery(
        body.replenishment_id,
        received_quantity=body.received_quantity,
        received_by=body.received_by,
    )


# ─── Administrative exits ────────────────────────────────────────────────────


@router.post("/orders/{replenishment_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    replenishment_id: str,
    body: AdminAction,
    workflow: ReplenishmentWorkflowEngine = Depends(get_workflow_engine),
):
    return await workflow.cancel_order(replenishment_id, reason=body.reason, actor=body.actor)


@router.post("/orders/{replenishment_id}/fail", response_model=OrderResponse)
async def fail_order(
    replenishment_id: str,
    body: AdminAction,
    workflow: ReplenishmentWorkflowEngine = Depends(get_workflow_engine),
):
    return await workflow.fail_order(replenishment_id, reason=body.reason, actor=body.actor)


# ─── Queries ─────────────────────────────────────────────────────────────────


@router.get("/orders/{replenishment_id}", response_model=OrderResponse)
async def get_order(
    replenishment_id: str,
    workflow: ReplenishmentWorkflowEngine = Depends(get_workflow_engine),
):
    return await workflow.get_order(replenishment_id)


@router.get("/orders/{replenishment_id}/history", response_model=list[HistoryEntryResponse])
async def get_order_history(
    replenishment_id: str,
    workflow: ReplenishmentWorkflowEngine = Depends(get_workflow_engine),
):
    """Full digital thread of one order, oldest entry first."""
    return await workflow.get_order_history(replenishment_id)


@router.get("/stores/{store_id}/orders", response_model=list[OrderResponse])
async def list_store_orders(
    store_id: str,
    status: str | None = None,
    workflow: ReplenishmentWorkflowEngine = Depends(get_workflow_engine),
):
    return await workflow.list_orders_by_store(store_id, status=status)


@router.get("/products/{product_id}/orders", response_model=list[OrderResponse])
async def list_product_orders(
    product_id: str,
    status: str | None = None,
    workflow: ReplenishmentWorkflowEngine = Depends(get_workflow_engine),
):
    return await workflow.list_orders_by_product(product_id, status=status)


@router.get("/active-orders", response_model=list[OrderResponse])
async def list_active_orders(
    workflow: ReplenishmentWorkflowEngine = Depends(get_workflow_engine),
):
    return await workflow.list_active_orders()
