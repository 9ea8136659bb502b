"""Warehouse stock store.

Holds the current quantity per (item, warehouse) and answers ledger reads.
Only the transaction processor mutates it. Methods flush but never commit;
the calling service owns the database transaction.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, lazyload

from stockledger.core.exceptions import ValidationError
from stockledger.models.catalog import ItemType, StockItem
from stockledger.models.stock import StockTransaction, WarehouseStock

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

Pair = Tuple[int, int]


class WarehouseStockStore:
    """Current stock per item per warehouse."""

    def __init__(self, db: Session):
        self.db = db

    # ===== ROW ACCESS =====

    def _pair_query(self, item_id: int, warehouse_id: int, for_update: bool = False):
        query = self.db.query(WarehouseStock).filter(
            WarehouseStock.item_id == item_id,
            WarehouseStock.warehouse_id == warehouse_id,
        )
        if for_update:
            # Eager joins would put the lock on an outer join; lock the stock row only
            query = query.options(lazyload("*")).with_for_update(of=WarehouseStock)
        return query

    def _row(self, item_id: int, warehouse_id: int, for_update: bool = False) -> Optional[WarehouseStock]:
        return self._pair_query(item_id, warehouse_id, for_update).first()

    def _ensure_row(self, item_id: int, warehouse_id: int) -> WarehouseStock:
        """Return the locked row for a pair, creating a zero row if missing."""
        row = self._row(item_id, warehouse_id, for_update=True)
        if row is not None:
            return row

        savepoint = self.db.begin_nested()
        try:
            row = WarehouseStock(item_id=item_id, warehouse_id=warehouse_id, current_quantity=ZERO)
            self.db.add(row)
            savepoint.commit()
        except IntegrityError:
            # Another writer created the pair first
            savepoint.rollback()
            row = self._row(item_id, warehouse_id, for_update=True)
        return row

    def lock_rows(self, pairs: Iterable[Pair]) -> Dict[Pair, WarehouseStock]:
        """Ensure and lock the rows for ``pairs`` in (item_id, warehouse_id) order."""
        locked: Dict[Pair, WarehouseStock] = {}
        for pair in sorted(set(pairs)):
            locked[pair] = self._ensure_row(*pair)
        return locked

    # ===== READS =====

    def get_quantity(self, item_id: int, warehouse_id: int) -> Decimal:
        row = self._row(item_id, warehouse_id)
        return Decimal(row.current_quantity) if row else ZERO

    def quantities_for(self, warehouse_id: int, item_ids: Iterable[int]) -> Dict[int, Decimal]:
        """Current quantity per item in one warehouse; missing rows read as 0."""
        ids = list(set(item_ids))
        if not ids:
            return {}
        rows = (
            self.db.query(WarehouseStock.item_id, WarehouseStock.current_quantity)
            .filter(WarehouseStock.warehouse_id == warehouse_id, WarehouseStock.item_id.in_(ids))
            .all()
        )
        found = {item_id: Decimal(qty) for item_id, qty in rows}
        return {item_id: found.get(item_id, ZERO) for item_id in ids}

    def list_stock(
        self,
        warehouse_id: Optional[int] = None,
        item_type: Optional[ItemType] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[WarehouseStock], int]:
        query = self.db.query(WarehouseStock).join(StockItem, WarehouseStock.item_id == StockItem.id)
        if warehouse_id is not None:
            query = query.filter(WarehouseStock.warehouse_id == warehouse_id)
        if item_type is not None:
            query = query.filter(StockItem.item_type == item_type)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(StockItem.name.ilike(pattern), StockItem.code.ilike(pattern)))

        total = query.count()
        rows = (
            query.order_by(StockItem.name, WarehouseStock.warehouse_id)
            .offset(skip)
            .limit(limit)
            .all()
        )
        return rows, total

    def stock_by_item(self, item_id: int) -> List[WarehouseStock]:
        return (
            self.db.query(WarehouseStock)
            .filter(WarehouseStock.item_id == item_id)
            .order_by(WarehouseStock.warehouse_id)
            .all()
        )

    def ledger_sum(self, item_id: int, warehouse_id: int, on_date: Optional[date] = None) -> Decimal:
        query = self.db.query(func.coalesce(func.sum(StockTransaction.quantity_delta), 0)).filter(
            StockTransaction.item_id == item_id,
            StockTransaction.warehouse_id == warehouse_id,
        )
        if on_date is not None:
            query = query.filter(StockTransaction.occurred_at <= on_date)
        return Decimal(str(query.scalar()))

    def quantity_at(self, item_id: int, warehouse_id: int, on_date: date) -> Decimal:
        """Quantity at the end of ``on_date`` rebuilt from the ledger."""
        return self.ledger_sum(item_id, warehouse_id, on_date)

    def verify_pair(self, item_id: int, warehouse_id: int) -> dict:
        """Compare the stored quantity with the sum of its ledger deltas."""
        stored = self.get_quantity(item_id, warehouse_id)
        ledger = self.ledger_sum(item_id, warehouse_id)
        if stored != ledger:
            logger.error(
                "Ledger mismatch for item %s in warehouse %s: stored=%s ledger=%s",
                item_id, warehouse_id, stored, ledger,
            )
        return {
            "item_id": item_id,
            "warehouse_id": warehouse_id,
            "stored_quantity": stored,
            "ledger_quantity": ledger,
            "consistent": stored == ledger,
        }

    # ===== MUTATIONS =====

    def apply_delta(self, item_id: int, warehouse_id: int, delta: Decimal) -> Decimal:
        """Add a signed delta and return the new quantity."""
        row = self._ensure_row(item_id, warehouse_id)
        new_qty = Decimal(row.current_quantity) + Decimal(delta)
        if new_qty < 0:
            raise ValidationError(
                f"Stock for item {item_id} in warehouse {warehouse_id} would become negative",
                item_id=item_id,
                warehouse_id=warehouse_id,
            )
        row.current_quantity = new_qty
        row.last_updated = datetime.now(timezone.utc)
        self.db.flush()
        return new_qty

    def set_absolute(self, item_id: int, warehouse_id: int, value: Decimal) -> Tuple[Decimal, Decimal]:
        """Overwrite the quantity. Returns (previous, new)."""
        value = Decimal(value)
        if value < 0:
            raise ValidationError(
                "Stock quantity cannot be negative", item_id=item_id, warehouse_id=warehouse_id
            )
        row = self._ensure_row(item_id, warehouse_id)
        previous = Decimal(row.current_quantity)
        row.current_quantity = value
        row.last_updated = datetime.now(timezone.utc)
        self.db.flush()
        return previous, value
