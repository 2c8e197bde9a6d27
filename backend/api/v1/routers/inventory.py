"""
Inventory Router — store and warehouse stock levels.

Stock changes go through the inventory ledger so warehouse counters stay
balanced and store stock never drops below zero.
"""

from datetime import datetime
from enum import Enum

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db, get_ledger
from core.exceptions import NotFound
from db.models import Store, StoreInventory, Warehouse
from inventory.ledger import InventoryLedger

router = APIRouter(prefix="/api/v1/inventory", tags=["inventory"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class StockOperation(str, Enum):
    ADD = "add"
    SUBTRACT = "subtract"
    SET = "set"


class StoreInventoryResponse(BaseModel):
    store_id: str
    product_id: str
    product_name: str
    product_category: str
    current_stock: int
    reorder_threshold: int
    max_stock_level: int
    unit_cost: float
    needs_replenishment: bool
    last_stock_update: datetime
    last_replenishment_at: datetime | None

    model_config = {"from_attributes": True}


class StoreInventoryCreate(BaseModel):
    store_id: str = Field(..., min_length=1)
    product_id: str = Field(..., min_length=1)
    product_name: str = Field(..., min_length=1)
    product_category: str = Field(..., min_length=1)
    current_stock: int = Field(..., ge=0)
    reorder_threshold: int = Field(10, ge=0)
    max_stock_level: int = Field(100, ge=0)
    unit_cost: float = Field(..., ge=0)


class StockUpdate(BaseModel):
    quantity: int = Field(..., ge=0)
    operation: StockOperation = StockOperation.SET


class StockUpdateResponse(BaseModel):
    store_id: str
    product_id: str
    operation: StockOperation
    previous_stock: int
    current_stock: int
    reorder_threshold: int
    needs_replenishment: bool


class WarehouseInventoryResponse(BaseModel):
    warehouse_id: str
    product_id: str
    product_name: str
    total_stock: int
    available_stock: int
    reserved_stock: int
    unit_cost: float
    last_restocked_at: datetime | None

    model_config = {"from_attributes": True}


class RestockRequest(BaseModel):
    quantity: int = Field(..., ge=1)


class WarehouseLevelResponse(BaseModel):
    warehouse_id: str
    product_id: str
    total_stock: int
    available_stock: int
    reserved_stock: int

    model_config = {"from_attributes": True}


class StoreResponse(BaseModel):
    store_id: str
    store_name: str
    city: str | None
    state: str | None
    zip_code: str | None
    manager_name: str | None
    contact_email: str | None
    status: str

    model_config = {"from_attributes": True}


class WarehouseResponse(BaseModel):
    warehouse_id: str
    warehouse_name: str
    city: str | None
    state: str | None
    capacity: int
    status: str

    model_config = {"from_attributes": True}


# ─── Store inventory ─────────────────────────────────────────────────────────


@router.get("/", response_model=list[StoreInventoryResponse])
async def list_inventory(
    store_id: str | None = None,
    product_id: str | None = None,
    low_stock: bool = False,
    db: AsyncSession = Depends(get_db),
    ledger: InventoryLedger = Depends(get_ledger),
):
    return await ledger.list_store_inventory(db, store_id=store_id, product_id=product_id, low_stock_only=low_stock)


@router.get("/low-stock", response_model=list[StoreInventoryResponse])
async def list_low_stock(
    store_id: str | None = None,
    db: AsyncSession = Depends(get_db),
    ledger: InventoryLedger = Depends(get_ledger),
):
    """Items at or below their reorder threshold, most depleted first."""
    return await ledger.list_store_inventory(db, store_id=store_id, low_stock_only=True)


@router.post("/", response_model=StoreInventoryResponse, status_code=status.HTTP_201_CREATED)
async def create_inventory_item(
    body: StoreInventoryCreate,
    db: AsyncSession = Depends(get_db),
):
    existing = await db.execute(
        select(StoreInventory.id).where(
            StoreInventory.store_id == body.store_id,
            StoreInventory.product_id == body.product_id,
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Inventory item already exists for {body.store_id}/{body.product_id}",
        )

    item = StoreInventory(**body.model_dump())
    db.add(item)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Inventory item already exists for {body.store_id}/{body.product_id}",
        ) from None
    await db.refresh(item)
    return item


@router.put("/stores/{store_id}/products/{product_id}/stock", response_model=StockUpdateResponse)
async def update_stock(
    store_id: str,
    product_id: str,
    body: StockUpdate,
    db: AsyncSession = Depends(get_db),
    ledger: InventoryLedger = Depends(get_ledger),
):
    """Point-of-sale or manual stock change for one store item."""
    async with db.begin():
        if body.operation == StockOperation.SET:
            level = await ledger.set_store_stock(db, store_id, product_id, body.quantity)
        else:
            delta = body.quantity if body.operation == StockOperation.ADD else -body.quantity
            level = await ledger.adjust_store_stock(db, store_id, product_id, delta)

    return StockUpdateResponse(
        store_id=store_id,
        product_id=product_id,
        operation=body.operation,
        previous_stock=level.previous_stock,
        current_stock=level.current_stock,
        reorder_threshold=level.reorder_threshold,
        needs_replenishment=level.needs_replenishment,
    )


@router.get("/stores", response_model=list[StoreResponse])
async def list_stores(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Store).order_by(Store.store_id))
    return result.scalars().all()


@router.get("/stores/{store_id}", response_model=list[StoreInventoryResponse])
async def get_store_inventory(
    store_id: str,
    db: AsyncSession = Depends(get_db),
    ledger: InventoryLedger = Depends(get_ledger),
):
    store = await db.get(Store, store_id)
    if store is None:
        raise NotFound("Store", store_id)
    return await ledger.list_store_inventory(db, store_id=store_id)


# ─── Warehouse inventory ─────────────────────────────────────────────────────


@router.get("/warehouses", response_model=list[WarehouseResponse])
async def list_warehouses(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Warehouse).order_by(Warehouse.warehouse_id))
    return result.scalars().all()


@router.get("/warehouses/{warehouse_id}", response_model=list[WarehouseInventoryResponse])
async def get_warehouse_inventory(
    warehouse_id: str,
    db: AsyncSession = Depends(get_db),
    ledger: InventoryLedger = Depends(get_ledger),
):
    warehouse = await db.get(Warehouse, warehouse_id)
    if warehouse is None:
        raise NotFound("Warehouse", warehouse_id)
    return await ledger.list_warehouse_inventory(db, warehouse_id)


@router.post(
    "/warehouses/{warehouse_id}/products/{product_id}/restock",
    response_model=WarehouseLevelResponse,
)
async def restock_warehouse(
    warehouse_id: str,
    product_id: str,
    body: RestockRequest,
    db: AsyncSession = Depends(get_db),
    ledger: InventoryLedger = Depends(get_ledger),
):
    """Receive goods at the warehouse: total and available both grow."""
    async with db.begin():
        level = await ledger.restock_warehouse(db, warehouse_id, product_id, body.quantity)
    return level
