"""Catalog lookups for stock items and warehouses.

The ledger treats the catalog as read-only reference data. Everything the
stock services need from it goes through ``CatalogAdapter`` so the rest of
the code never queries the catalog tables directly.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from stockledger.core.exceptions import NotFoundError, ValidationError
from stockledger.models.catalog import ItemType, StockItem, Warehouse

logger = logging.getLogger(__name__)


class CatalogAdapter:
    """Read access to stock items and warehouses."""

    def __init__(self, db: Session):
        self.db = db

    # ===== WAREHOUSES =====

    def list_warehouses(self, include_inactive: bool = False) -> List[Warehouse]:
        query = self.db.query(Warehouse)
        if not include_inactive:
            query = query.filter(Warehouse.is_active.is_(True))
        return query.order_by(Warehouse.name).all()

    def get_warehouse(self, warehouse_id: int, require_active: bool = True) -> Warehouse:
        """Return the warehouse or raise NotFoundError / ValidationError."""
        warehouse = self.db.get(Warehouse, warehouse_id)
        if warehouse is None:
            raise NotFoundError(f"Warehouse {warehouse_id} not found", warehouse_id=warehouse_id)
        if require_active and not warehouse.is_active:
            raise ValidationError(
                f"Warehouse '{warehouse.name}' is inactive", warehouse_id=warehouse_id
            )
        return warehouse

    def default_warehouse(self) -> Optional[Warehouse]:
        return (
            self.db.query(Warehouse)
            .filter(Warehouse.is_default.is_(True), Warehouse.is_active.is_(True))
            .order_by(Warehouse.id)
            .first()
        )

    # ===== ITEMS =====

    def get_item(self, item_id: int, require_active: bool = True) -> StockItem:
        """Return the stock item or raise NotFoundError / ValidationError."""
        item = self.db.get(StockItem, item_id)
        if item is None:
            raise NotFoundError(f"Stock item {item_id} not found", item_id=item_id)
        if require_active and not item.is_active:
            raise ValidationError(f"Stock item '{item.name}' is inactive", item_id=item_id)
        return item

    def get_items(self, item_ids: Iterable[int]) -> dict:
        """Map id -> StockItem for the ids that exist."""
        ids = set(item_ids)
        if not ids:
            return {}
        rows = self.db.query(StockItem).filter(StockItem.id.in_(ids)).all()
        return {row.id: row for row in rows}

    def auditable_items(
        self,
        item_types: Iterable[ItemType],
        stock_grades: Optional[Iterable[str]] = None,
    ) -> List[StockItem]:
        """Active items an audit should cover.

        Ingredients are only counted when they carry a stock grade, and
        ``stock_grades`` narrows them further. Containers have no grade.
        """
        types = {ItemType(t) for t in item_types}
        clauses = []
        if ItemType.INGREDIENT in types:
            ingredient = (StockItem.item_type == ItemType.INGREDIENT) & StockItem.stock_grade.isnot(None)
            if stock_grades:
                ingredient = ingredient & StockItem.stock_grade.in_(list(stock_grades))
            clauses.append(ingredient)
        if ItemType.CONTAINER in types:
            clauses.append(StockItem.item_type == ItemType.CONTAINER)
        if not clauses:
            return []

        return (
            self.db.query(StockItem)
            .filter(StockItem.is_active.is_(True), or_(*clauses))
            .order_by(StockItem.name, StockItem.id)
            .all()
        )
