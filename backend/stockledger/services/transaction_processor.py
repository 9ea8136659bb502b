"""Batch stock transaction processor.

Turns a cart of items into ledger mutations with all-or-nothing semantics:

- Validation runs in a fixed order and stops at the first failing stage
- Rows for every affected (item, warehouse) pair are locked before the
  availability check, so check and apply are atomic per pair
- Quantities for the same pair are summed before comparing with stock
- A transfer writes a transfer_out / transfer_in pair sharing one
  linked_transfer_id
- One commit per batch; any exception rolls the whole batch back
"""

import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from stockledger.core.exceptions import (
    InsufficientStockError,
    NotFoundError,
    StockLedgerError,
    ValidationError,
)
from stockledger.models.catalog import StockItem
from stockledger.models.stock import (
    OUTBOUND_TYPES,
    RequestType,
    StockTransaction,
    TransactionType,
)
from stockledger.services.catalog import CatalogAdapter
from stockledger.services.stock_store import WarehouseStockStore

logger = logging.getLogger(__name__)

# Ledger type for single-leg requests; transfers write two legs
_SINGLE_LEG_TYPE = {
    RequestType.INCOMING: TransactionType.INCOMING,
    RequestType.OUTGOING: TransactionType.OUTGOING,
    RequestType.DISPOSAL: TransactionType.DISPOSAL,
}


@dataclass
class CartItem:
    """One line of a cart. Per-item warehouses override the batch ones."""

    item_id: int
    quantity: Decimal
    warehouse_id: Optional[int] = None
    source_warehouse_id: Optional[int] = None
    destination_warehouse_id: Optional[int] = None


@dataclass
class BatchOptions:
    warehouse_id: Optional[int] = None
    source_warehouse_id: Optional[int] = None
    destination_warehouse_id: Optional[int] = None
    notes: Optional[str] = None
    occurred_at: Optional[date] = None
    created_by: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None


@dataclass
class BatchResult:
    transactions: List[StockTransaction] = field(default_factory=list)
    linked_transfer_ids: List[str] = field(default_factory=list)


@dataclass
class _ResolvedLine:
    index: int
    item_id: int
    quantity: Decimal
    # (transaction type, warehouse id) per ledger leg
    legs: List[Tuple[TransactionType, int]]


class TransactionProcessor:
    """Applies carts and audit adjustments to the warehouse stock ledger."""

    def __init__(self, db: Session):
        self.db = db
        self.catalog = CatalogAdapter(db)
        self.store = WarehouseStockStore(db)

    # ===== CART PROCESSING =====

    def process_batch(
        self,
        items: Sequence[CartItem],
        request_type,
        options: Optional[BatchOptions] = None,
    ) -> BatchResult:
        """Validate and apply a cart in one database transaction.

        Raises:
            ValidationError: empty cart, non-positive quantity, missing or
                identical transfer warehouses, inactive item or warehouse.
            NotFoundError: unknown item or warehouse.
            InsufficientStockError: any outbound pair short of stock; lists
                every short pair.
        """
        options = options or BatchOptions()
        try:
            request_type = RequestType(request_type)
        except ValueError:
            raise ValidationError(
                f"Unsupported request type: {request_type}",
                allowed=[t.value for t in RequestType],
            )

        try:
            lines = self._resolve_lines(items, request_type, options)
            catalog_items = self._check_catalog(lines)
            self._lock_and_check_stock(lines, catalog_items)
            result = self._apply(lines, request_type, options)
            self.db.commit()
        except StockLedgerError as e:
            self.db.rollback()
            logger.warning("Rejected %s batch of %d item(s): %s", request_type.value, len(items), e.message)
            raise
        except Exception:
            self.db.rollback()
            logger.error("Stock batch failed, rolled back", exc_info=True)
            raise

        logger.info(
            "Applied %s batch: %d item(s), %d transaction(s)",
            request_type.value, len(lines), len(result.transactions),
        )
        return result

    def _resolve_lines(
        self,
        items: Sequence[CartItem],
        request_type: RequestType,
        options: BatchOptions,
    ) -> List[_ResolvedLine]:
        if not items:
            raise ValidationError("No items in the request")

        quantities = []
        for index, item in enumerate(items):
            quantity = Decimal(str(item.quantity))
            if quantity <= 0:
                raise ValidationError(
                    f"Quantity for item {item.item_id} must be greater than zero",
                    index=index,
                    item_id=item.item_id,
                    quantity=quantity,
                )
            quantities.append(quantity)

        default_id: Optional[int] = None
        lines: List[_ResolvedLine] = []
        for index, (item, quantity) in enumerate(zip(items, quantities)):
            if request_type == RequestType.TRANSFER:
                source = item.source_warehouse_id or options.source_warehouse_id
                destination = item.destination_warehouse_id or options.destination_warehouse_id
                if not source or not destination:
                    raise ValidationError(
                        "Transfers need a source and a destination warehouse",
                        index=index,
                        item_id=item.item_id,
                    )
                if source == destination:
                    raise ValidationError(
                        "Source and destination warehouse must be different",
                        index=index,
                        item_id=item.item_id,
                        warehouse_id=source,
                    )
                legs = [
                    (TransactionType.TRANSFER_OUT, source),
                    (TransactionType.TRANSFER_IN, destination),
                ]
            else:
                warehouse_id = item.warehouse_id or options.warehouse_id
                if not warehouse_id:
                    if default_id is None:
                        default = self.catalog.default_warehouse()
                        if default is None:
                            raise ValidationError(
                                "No warehouse selected and no default warehouse configured",
                                index=index,
                                item_id=item.item_id,
                            )
                        default_id = default.id
                    warehouse_id = default_id
                legs = [(_SINGLE_LEG_TYPE[request_type], warehouse_id)]

            lines.append(_ResolvedLine(index=index, item_id=item.item_id, quantity=quantity, legs=legs))
        return lines

    def _check_catalog(self, lines: List[_ResolvedLine]) -> Dict[int, StockItem]:
        catalog_items = self.catalog.get_items(line.item_id for line in lines)
        missing = sorted({line.item_id for line in lines} - set(catalog_items))
        if missing:
            raise NotFoundError(f"Stock items not found: {missing}", item_ids=missing)
        for line in lines:
            item = catalog_items[line.item_id]
            if not item.is_active:
                raise ValidationError(
                    f"Stock item '{item.name}' is inactive", index=line.index, item_id=item.id
                )

        warehouse_ids = sorted({wh for line in lines for _, wh in line.legs})
        for warehouse_id in warehouse_ids:
            self.catalog.get_warehouse(warehouse_id)
        return catalog_items

    def _lock_and_check_stock(self, lines: List[_ResolvedLine], catalog_items: Dict[int, StockItem]) -> None:
        pairs = {(line.item_id, wh) for line in lines for _, wh in line.legs}
        locked = self.store.lock_rows(pairs)

        # Same pair may appear on several lines
        requested: "OrderedDict[Tuple[int, int], Decimal]" = OrderedDict()
        for line in lines:
            for tx_type, warehouse_id in line.legs:
                if tx_type in OUTBOUND_TYPES:
                    pair = (line.item_id, warehouse_id)
                    requested[pair] = requested.get(pair, Decimal("0")) + line.quantity

        shortages = []
        for (item_id, warehouse_id), quantity in requested.items():
            available = Decimal(locked[(item_id, warehouse_id)].current_quantity)
            if quantity > available:
                shortages.append({
                    "item_id": item_id,
                    "item_name": catalog_items[item_id].name,
                    "warehouse_id": warehouse_id,
                    "available": available,
                    "requested": quantity,
                })
        if shortages:
            raise InsufficientStockError(shortages)

    def _apply(self, lines: List[_ResolvedLine], request_type: RequestType, options: BatchOptions) -> BatchResult:
        result = BatchResult()
        occurred_at = options.occurred_at or date.today()

        for line in lines:
            linked_id = uuid.uuid4().hex if request_type == RequestType.TRANSFER else None
            for tx_type, warehouse_id in line.legs:
                delta = -line.quantity if tx_type in OUTBOUND_TYPES else line.quantity
                self.store.apply_delta(line.item_id, warehouse_id, delta)
                transaction = StockTransaction(
                    item_id=line.item_id,
                    warehouse_id=warehouse_id,
                    transaction_type=tx_type,
                    quantity_delta=delta,
                    occurred_at=occurred_at,
                    notes=options.notes,
                    reference_type=options.reference_type,
                    reference_id=options.reference_id,
                    linked_transfer_id=linked_id,
                    created_by=options.created_by,
                )
                self.db.add(transaction)
                result.transactions.append(transaction)
            if linked_id:
                result.linked_transfer_ids.append(linked_id)

        self.db.flush()
        return result

    # ===== AUDIT ADJUSTMENTS =====

    def record_adjustment(
        self,
        item_id: int,
        warehouse_id: int,
        new_quantity: Decimal,
        occurred_at: Optional[date] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Optional[StockTransaction]:
        """Set a pair to ``new_quantity`` and record the real delta.

        Returns None when the quantity already matches. Does not commit;
        the caller owns the transaction.
        """
        self.store.lock_rows([(item_id, warehouse_id)])
        previous, new = self.store.set_absolute(item_id, warehouse_id, new_quantity)
        delta = new - previous
        if delta == 0:
            return None

        transaction = StockTransaction(
            item_id=item_id,
            warehouse_id=warehouse_id,
            transaction_type=TransactionType.ADJUSTMENT,
            quantity_delta=delta,
            occurred_at=occurred_at or date.today(),
            notes=notes,
            reference_type=reference_type,
            reference_id=reference_id,
            created_by=created_by,
        )
        self.db.add(transaction)
        self.db.flush()
        logger.debug(
            "Adjustment for item %s in warehouse %s: %s -> %s (%s)",
            item_id, warehouse_id, previous, new, delta,
        )
        return transaction

    # ===== READS =====

    def list_transactions(
        self,
        item_id: Optional[int] = None,
        item_ids: Optional[Sequence[int]] = None,
        transaction_type: Optional[TransactionType] = None,
        warehouse_id: Optional[int] = None,
        occurred_on: Optional[date] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        search: Optional[str] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[StockTransaction], int]:
        """Filtered ledger entries, newest first."""
        query = self.db.query(StockTransaction)

        if item_id is not None:
            query = query.filter(StockTransaction.item_id == item_id)
        if item_ids:
            query = query.filter(StockTransaction.item_id.in_(list(item_ids)))
        if transaction_type is not None:
            query = query.filter(StockTransaction.transaction_type == TransactionType(transaction_type))
        if warehouse_id is not None:
            query = query.filter(StockTransaction.warehouse_id == warehouse_id)
        if occurred_on is not None:
            query = query.filter(StockTransaction.occurred_at == occurred_on)
        if date_from is not None:
            query = query.filter(StockTransaction.occurred_at >= date_from)
        if date_to is not None:
            query = query.filter(StockTransaction.occurred_at <= date_to)
        if reference_type:
            query = query.filter(StockTransaction.reference_type == reference_type)
        if reference_id is not None:
            query = query.filter(StockTransaction.reference_id == reference_id)
        if search:
            pattern = f"%{search}%"
            matching = select(StockItem.id).where(
                or_(StockItem.name.ilike(pattern), StockItem.code.ilike(pattern))
            )
            query = query.filter(StockTransaction.item_id.in_(matching))

        total = query.count()
        rows = (
            query.order_by(StockTransaction.occurred_at.desc(), StockTransaction.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )
        return rows, total

    def get_transfer(self, linked_transfer_id: str) -> List[StockTransaction]:
        """Both legs of a transfer, outgoing leg first."""
        legs = (
            self.db.query(StockTransaction)
            .filter(StockTransaction.linked_transfer_id == linked_transfer_id)
            .order_by(StockTransaction.quantity_delta)
            .all()
        )
        if not legs:
            raise NotFoundError(
                f"Transfer {linked_transfer_id} not found", linked_transfer_id=linked_transfer_id
            )
        return legs
