"""Warehouse routes (read-only catalog)."""

from typing import List

from fastapi import APIRouter, Request

from stockledger.core.rate_limit import READ_LIMIT, limiter
from stockledger.core.rbac import CanReadStock
from stockledger.db.session import DbSession
from stockledger.schemas.stock import WarehouseResponse
from stockledger.services.catalog import CatalogAdapter

router = APIRouter()


@router.get("", response_model=List[WarehouseResponse])
@limiter.limit(READ_LIMIT)
def list_warehouses(request: Request, db: DbSession, current_user: CanReadStock, include_inactive: bool = False):
    """List warehouses, default one included."""
    return CatalogAdapter(db).list_warehouses(include_inactive=include_inactive)


@router.get("/{warehouse_id}", response_model=WarehouseResponse)
@limiter.limit(READ_LIMIT)
def get_warehouse(request: Request, warehouse_id: int, db: DbSession, current_user: CanReadStock):
    """Get a single warehouse."""
    return CatalogAdapter(db).get_warehouse(warehouse_id, require_active=False)
