"""Stock audit reconciliation.

Flow:
1. ``create_audit`` snapshots the book quantity of every auditable item in
   one warehouse
2. Operators record counted quantities through ``commit_batch`` (usually
   from an ``AuditEditBuffer``)
3. ``complete`` closes the audit and, when asked, adjusts the ledger to the
   counted quantities through the transaction processor

An audit only moves forward: in_progress -> completed.
"""

import logging
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import case, func, or_
from sqlalchemy.orm import Session, lazyload

from stockledger.core.config import settings
from stockledger.core.exceptions import (
    InvalidStateError,
    NotFoundError,
    StaleSnapshotError,
    StockLedgerError,
    ValidationError,
)
from stockledger.models.audit import (
    AuditItemStatus,
    AuditStatus,
    StockAudit,
    StockAuditItem,
    audit_item_status_expr,
)
from stockledger.models.catalog import ItemType
from stockledger.services.catalog import CatalogAdapter
from stockledger.services.stock_store import WarehouseStockStore
from stockledger.services.transaction_processor import TransactionProcessor

logger = logging.getLogger(__name__)

AUDIT_REFERENCE_TYPE = "stock_audit"

_UPDATABLE_FIELDS = ("actual_quantity", "notes")


class AuditManager:
    """Creates, counts and completes stock audits."""

    def __init__(self, db: Session):
        self.db = db
        self.catalog = CatalogAdapter(db)
        self.store = WarehouseStockStore(db)

    # ===== CREATE / READ =====

    def create_audit(
        self,
        name: str,
        audit_date: date,
        warehouse_id: Optional[int] = None,
        item_types: Optional[Iterable[ItemType]] = None,
        stock_grades: Optional[Iterable[str]] = None,
        description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Tuple[StockAudit, int]:
        """Create an audit and snapshot book quantities.

        An audit with no matching items is still created.

        Returns:
            (audit, number of audit items)
        """
        if not name or not name.strip():
            raise ValidationError("Audit name is required")

        if warehouse_id is not None:
            warehouse = self.catalog.get_warehouse(warehouse_id)
        else:
            warehouse = self.catalog.default_warehouse()
            if warehouse is None:
                raise ValidationError("No warehouse selected and no default warehouse configured")

        types = [ItemType(t) for t in (item_types or [ItemType.INGREDIENT, ItemType.CONTAINER])]
        grades = list(stock_grades) if stock_grades else None

        try:
            audit = StockAudit(
                name=name.strip(),
                description=description,
                audit_date=audit_date,
                status=AuditStatus.IN_PROGRESS,
                warehouse_id=warehouse.id,
                item_types=[t.value for t in types],
                stock_grades=grades,
                created_by=created_by,
            )
            self.db.add(audit)
            self.db.flush()

            catalog_items = self.catalog.auditable_items(types, grades)
            book = self.store.quantities_for(warehouse.id, [item.id for item in catalog_items])
            for item in catalog_items:
                self.db.add(StockAuditItem(
                    audit_id=audit.id,
                    item_id=item.id,
                    item_name=item.name,
                    item_code=item.code,
                    item_type=item.item_type,
                    unit=item.unit,
                    stock_grade=item.stock_grade,
                    book_quantity=book[item.id],
                ))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(audit)
        logger.info(
            "Created stock audit %s '%s' for warehouse %s with %d item(s)",
            audit.id, audit.name, warehouse.id, len(catalog_items),
        )
        return audit, len(catalog_items)

    def _audit_query(self, audit_id: int, for_update: bool = False):
        query = self.db.query(StockAudit).filter(StockAudit.id == audit_id)
        if for_update:
            # Lock the audit row alone, without the joined warehouse
            query = query.options(lazyload("*")).with_for_update(of=StockAudit)
        return query

    def get_audit(self, audit_id: int, for_update: bool = False) -> StockAudit:
        audit = self._audit_query(audit_id, for_update).first()
        if audit is None:
            raise NotFoundError(f"Stock audit {audit_id} not found", audit_id=audit_id)
        return audit

    def list_audits(
        self,
        status: Optional[AuditStatus] = None,
        warehouse_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[StockAudit], int]:
        query = self.db.query(StockAudit)
        if status is not None:
            query = query.filter(StockAudit.status == AuditStatus(status))
        if warehouse_id is not None:
            query = query.filter(StockAudit.warehouse_id == warehouse_id)
        total = query.count()
        rows = (
            query.order_by(StockAudit.audit_date.desc(), StockAudit.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )
        return rows, total

    def get_stats(self, audit_id: int) -> Dict[str, int]:
        """Counts over all items of an audit in one aggregate query."""
        status = audit_item_status_expr()

        def _count(value: AuditItemStatus):
            return func.coalesce(func.sum(case((status == value.value, 1), else_=0)), 0)

        total, pending, counted, discrepancy = (
            self.db.query(
                func.count(StockAuditItem.id),
                _count(AuditItemStatus.PENDING),
                _count(AuditItemStatus.COUNTED),
                _count(AuditItemStatus.DISCREPANCY),
            )
            .filter(StockAuditItem.audit_id == audit_id)
            .one()
        )
        completion_rate = 0
        if total:
            rate = Decimal(counted + discrepancy) * 100 / Decimal(total)
            completion_rate = int(rate.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        return {
            "total": int(total),
            "pending": int(pending),
            "counted": int(counted),
            # Same figure under the name the audit screens use
            "completed": int(counted),
            "discrepancy": int(discrepancy),
            "completion_rate": completion_rate,
        }

    def get_audit_detail(
        self,
        audit_id: int,
        page: int = 1,
        page_size: Optional[int] = None,
        item_type: Optional[ItemType] = None,
        search: Optional[str] = None,
        status: Optional[AuditItemStatus] = None,
    ) -> Dict[str, Any]:
        """Audit header, one page of items and stats over every item."""
        audit = self.get_audit(audit_id)
        page = max(page, 1)
        page_size = min(page_size or settings.default_page_size, settings.max_page_size)

        query = self.db.query(StockAuditItem).filter(StockAuditItem.audit_id == audit_id)
        if item_type is not None:
            query = query.filter(StockAuditItem.item_type == ItemType(item_type))
        if search:
            pattern = f"%{search}%"
            query = query.filter(
                or_(StockAuditItem.item_name.ilike(pattern), StockAuditItem.item_code.ilike(pattern))
            )
        if status is not None:
            query = query.filter(audit_item_status_expr() == AuditItemStatus(status).value)

        total = query.count()
        items = (
            query.order_by(StockAuditItem.item_name, StockAuditItem.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )

        return {
            "audit": audit,
            "warehouse": audit.warehouse,
            "items": items,
            "stats": self.get_stats(audit_id),
            "pagination": {
                "page": page,
                "page_size": page_size,
                "total": total,
                "page_count": (total + page_size - 1) // page_size,
            },
        }

    def get_item(self, audit_id: int, audit_item_id: int) -> StockAuditItem:
        item = (
            self.db.query(StockAuditItem)
            .filter(StockAuditItem.audit_id == audit_id, StockAuditItem.id == audit_item_id)
            .first()
        )
        if item is None:
            raise NotFoundError(
                f"Audit item {audit_item_id} not found in audit {audit_id}",
                audit_id=audit_id,
                audit_item_id=audit_item_id,
            )
        return item

    # ===== COUNTING =====

    def commit_batch(
        self,
        audit_id: int,
        updates: Mapping[int, Mapping[str, Any]],
        actor: Optional[str] = None,
    ) -> Dict[str, int]:
        """Apply staged counts to an open audit, all or nothing.

        ``updates`` maps audit item id to ``{actual_quantity?, notes?,
        version?}``. An explicit ``actual_quantity`` of None clears the
        count. When ``version`` is given it must match the stored one.
        """
        try:
            audit = self.get_audit(audit_id, for_update=True)
            if not audit.is_open:
                raise InvalidStateError(
                    "Completed audits cannot be modified", audit_id=audit_id, status=audit.status.value
                )

            normalized = {int(k): dict(v) for k, v in updates.items()}
            if not normalized:
                return {"updated_count": 0}

            rows = (
                self.db.query(StockAuditItem)
                .filter(StockAuditItem.audit_id == audit_id, StockAuditItem.id.in_(list(normalized)))
                .order_by(StockAuditItem.id)
                .with_for_update(of=StockAuditItem)
                .all()
            )
            by_id = {row.id: row for row in rows}
            missing = sorted(set(normalized) - set(by_id))
            if missing:
                raise NotFoundError(
                    f"Audit items not found in audit {audit_id}: {missing}",
                    audit_id=audit_id,
                    audit_item_ids=missing,
                )

            # Validate every entry before touching any row
            changes: Dict[int, Dict[str, Any]] = {}
            for item_id, update in normalized.items():
                row = by_id[item_id]
                row.check_version(update.get("version"))
                change = {k: update[k] for k in _UPDATABLE_FIELDS if k in update}
                if change.get("actual_quantity") is not None:
                    quantity = Decimal(str(change["actual_quantity"]))
                    if quantity < 0:
                        raise ValidationError(
                            f"Actual quantity for '{row.item_name}' cannot be negative",
                            audit_item_id=item_id,
                            actual_quantity=quantity,
                        )
                    change["actual_quantity"] = quantity
                changes[item_id] = change

            now = datetime.now(timezone.utc)
            for item_id, change in changes.items():
                row = by_id[item_id]
                for key, value in change.items():
                    setattr(row, key, value)
                if "actual_quantity" in change:
                    row.audited_by = actor
                    row.audited_at = now
                row.increment_version()

            self.db.commit()
        except StockLedgerError as e:
            self.db.rollback()
            logger.warning("Rejected count batch for audit %s: %s", audit_id, e.message)
            raise
        except Exception:
            self.db.rollback()
            raise

        logger.info("Committed %d count(s) to audit %s", len(changes), audit_id)
        return {"updated_count": len(changes)}

    def update_item(
        self,
        audit_id: int,
        audit_item_id: int,
        actual_quantity: Decimal,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
        actor: Optional[str] = None,
    ) -> StockAuditItem:
        """Single-item count; same rules as a one-entry batch."""
        update: Dict[str, Any] = {"actual_quantity": actual_quantity, "version": expected_version}
        if notes is not None:
            update["notes"] = notes
        self.commit_batch(audit_id, {audit_item_id: update}, actor=actor)
        return self.get_item(audit_id, audit_item_id)

    # ===== COMPLETION =====

    def complete(
        self,
        audit_id: int,
        apply_differences: bool = False,
        actor: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Close an open audit, optionally adjusting the ledger to the counts.

        Under the ``reject`` drift policy, any discrepancy item whose live
        quantity moved since the snapshot fails the whole completion with
        StaleSnapshotError. Under ``overwrite`` the counted value wins and
        the adjustment records the real delta.
        """
        policy = settings.audit_drift_policy
        applied_count = 0
        try:
            audit = self.get_audit(audit_id, for_update=True)
            if not audit.is_open:
                raise InvalidStateError(
                    "Audit is already completed", audit_id=audit_id, status=audit.status.value
                )

            if apply_differences:
                applied_count = self._apply_differences(audit, policy, actor)
                audit.drift_policy = policy

            audit.status = AuditStatus.COMPLETED
            audit.completed_at = datetime.now(timezone.utc)
            audit.completed_by = actor
            audit.applied_differences = apply_differences
            self.db.commit()
        except StockLedgerError as e:
            self.db.rollback()
            logger.warning("Rejected completion of audit %s: %s", audit_id, e.message)
            raise
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(audit)
        logger.info(
            "Completed stock audit %s (apply_differences=%s, adjustments=%d)",
            audit_id, apply_differences, applied_count,
        )
        return {
            "audit": audit,
            "applied_count": applied_count,
            "applied_differences": apply_differences,
        }

    def _apply_differences(self, audit: StockAudit, policy: str, actor: Optional[str]) -> int:
        discrepancies = (
            self.db.query(StockAuditItem)
            .filter(
                StockAuditItem.audit_id == audit.id,
                StockAuditItem.actual_quantity.isnot(None),
                StockAuditItem.actual_quantity != StockAuditItem.book_quantity,
            )
            .order_by(StockAuditItem.item_id)
            .all()
        )
        if not discrepancies:
            return 0

        locked = self.store.lock_rows((row.item_id, audit.warehouse_id) for row in discrepancies)
        drifted = []
        for row in discrepancies:
            live = Decimal(locked[(row.item_id, audit.warehouse_id)].current_quantity)
            if live != Decimal(row.book_quantity):
                drifted.append({
                    "audit_item_id": row.id,
                    "item_id": row.item_id,
                    "item_name": row.item_name,
                    "book_quantity": row.book_quantity,
                    "live_quantity": live,
                })

        if drifted and policy == "reject":
            raise StaleSnapshotError(
                f"Stock moved since the audit snapshot for {len(drifted)} item(s)",
                audit_id=audit.id,
                drifted=drifted,
            )
        if drifted:
            logger.warning(
                "Audit %s overwrites %d drifted item(s): %s",
                audit.id, len(drifted), [d["item_id"] for d in drifted],
            )

        processor = TransactionProcessor(self.db)
        applied = 0
        for row in discrepancies:
            transaction = processor.record_adjustment(
                item_id=row.item_id,
                warehouse_id=audit.warehouse_id,
                new_quantity=row.actual_quantity,
                occurred_at=audit.audit_date,
                reference_type=AUDIT_REFERENCE_TYPE,
                reference_id=audit.id,
                notes=f"Stock audit: {audit.name}",
                created_by=actor,
            )
            if transaction is not None:
                applied += 1
        return applied

    # ===== DELETE =====

    def delete_audit(self, audit_id: int) -> None:
        """Hard-delete an open audit and its items."""
        try:
            audit = self.get_audit(audit_id, for_update=True)
            if not audit.is_open:
                raise InvalidStateError(
                    "Completed audits cannot be deleted", audit_id=audit_id, status=audit.status.value
                )
            self.db.delete(audit)
            self.db.commit()
        except StockLedgerError as e:
            self.db.rollback()
            logger.warning("Rejected delete of audit %s: %s", audit_id, e.message)
            raise
        except Exception:
            self.db.rollback()
            raise

        logger.info("Deleted stock audit %s", audit_id)
