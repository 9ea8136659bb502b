"""Stock routes - current quantities and per-item ledger views."""

from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Query, Request

from stockledger.core.config import settings
from stockledger.core.exceptions import ValidationError
from stockledger.core.rate_limit import READ_LIMIT, limiter
from stockledger.core.rbac import CanReadStock
from stockledger.db.session import DbSession
from stockledger.models.catalog import ItemType
from stockledger.schemas.pagination import PaginatedResponse
from stockledger.schemas.stock import (
    ItemStockResponse,
    StockAtDateResponse,
    StockItemRef,
    WarehouseStockResponse,
)
from stockledger.schemas.transaction import StockTransactionResponse
from stockledger.services.catalog import CatalogAdapter
from stockledger.services.stock_store import WarehouseStockStore
from stockledger.services.transaction_processor import TransactionProcessor

router = APIRouter()


@router.get("", response_model=PaginatedResponse[WarehouseStockResponse])
@limiter.limit(READ_LIMIT)
def list_stock(
    request: Request,
    db: DbSession,
    current_user: CanReadStock,
    warehouse_id: Optional[int] = None,
    item_type: Optional[ItemType] = None,
    search: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
):
    """Current stock per item and warehouse."""
    rows, total = WarehouseStockStore(db).list_stock(
        warehouse_id=warehouse_id, item_type=item_type, search=search, skip=skip, limit=limit
    )
    return PaginatedResponse.create(
        items=[WarehouseStockResponse.model_validate(r) for r in rows],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/items/{item_id}", response_model=ItemStockResponse)
@limiter.limit(READ_LIMIT)
def get_item_stock(request: Request, item_id: int, db: DbSession, current_user: CanReadStock):
    """Stock of one item in every warehouse that has a row for it."""
    item = CatalogAdapter(db).get_item(item_id, require_active=False)
    rows = WarehouseStockStore(db).stock_by_item(item_id)
    return ItemStockResponse(
        item=StockItemRef.model_validate(item),
        total_quantity=sum((Decimal(r.current_quantity) for r in rows), Decimal("0")),
        warehouses=[WarehouseStockResponse.model_validate(r) for r in rows],
    )


@router.get("/items/{item_id}/at-date", response_model=StockAtDateResponse)
@limiter.limit(READ_LIMIT)
def get_item_stock_at_date(
    request: Request,
    item_id: int,
    db: DbSession,
    current_user: CanReadStock,
    on_date: date = Query(..., alias="date"),
    warehouse_id: Optional[int] = None,
):
    """Quantity at the end of a day, rebuilt from the ledger."""
    catalog = CatalogAdapter(db)
    catalog.get_item(item_id, require_active=False)
    if warehouse_id is None:
        default = catalog.default_warehouse()
        if default is None:
            raise ValidationError("No warehouse selected and no default warehouse configured")
        warehouse_id = default.id
    else:
        catalog.get_warehouse(warehouse_id, require_active=False)

    quantity = WarehouseStockStore(db).quantity_at(item_id, warehouse_id, on_date)
    return StockAtDateResponse(item_id=item_id, warehouse_id=warehouse_id, on_date=on_date, quantity=quantity)


@router.get("/items/{item_id}/history", response_model=PaginatedResponse[StockTransactionResponse])
@limiter.limit(READ_LIMIT)
def get_item_history(
    request: Request,
    item_id: int,
    db: DbSession,
    current_user: CanReadStock,
    warehouse_id: Optional[int] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
):
    """Ledger entries of one item, newest first."""
    CatalogAdapter(db).get_item(item_id, require_active=False)
    rows, total = TransactionProcessor(db).list_transactions(
        item_id=item_id,
        warehouse_id=warehouse_id,
        date_from=date_from,
        date_to=date_to,
        skip=skip,
        limit=limit,
    )
    return PaginatedResponse.create(
        items=[StockTransactionResponse.model_validate(r) for r in rows],
        total=total,
        skip=skip,
        limit=limit,
    )
