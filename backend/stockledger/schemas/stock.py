"""Stock and catalog schemas."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from stockledger.models.catalog import ItemType


class WarehouseResponse(BaseModel):
    """Warehouse response schema."""

    id: int
    name: str
    code: Optional[str] = None
    is_default: bool
    is_active: bool

    model_config = {"from_attributes": True}


class WarehouseRef(BaseModel):
    """Short warehouse reference embedded in other responses."""

    id: int
    name: str

    model_config = {"from_attributes": True}


class StockItemRef(BaseModel):
    """Catalog snapshot of a stock item."""

    id: int
    name: str
    code: Optional[str] = None
    item_type: ItemType
    unit: str
    stock_grade: Optional[str] = None

    model_config = {"from_attributes": True}


class WarehouseStockResponse(BaseModel):
    """Current quantity of one item in one warehouse."""

    id: int
    item_id: int
    warehouse_id: int
    current_quantity: Decimal
    last_updated: datetime
    item: StockItemRef
    warehouse: WarehouseRef

    model_config = {"from_attributes": True}


class ItemStockResponse(BaseModel):
    """Stock of one item across all warehouses."""

    item: StockItemRef
    total_quantity: Decimal
    warehouses: list[WarehouseStockResponse]


class StockAtDateResponse(BaseModel):
    """Quantity of a pair as of the end of a given day."""

    item_id: int
    warehouse_id: int
    on_date: date
    quantity: Decimal
