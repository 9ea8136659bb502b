"""Stock audit models: StockAudit and StockAuditItem."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    case,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from stockledger.db.base import Base, VersionMixin
from stockledger.models.catalog import ItemType, Warehouse  # noqa: F401
from stockledger.models.validators import non_negative, validate_list


class AuditStatus(str, Enum):
    """Lifecycle of a stock audit. Moves forward only."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class AuditItemStatus(str, Enum):
    """Derived count state of a single audit line."""

    PENDING = "pending"
    COUNTED = "counted"
    DISCREPANCY = "discrepancy"


def audit_item_status(actual: Optional[Decimal], book: Decimal) -> AuditItemStatus:
    """Count state from the counted and book quantities."""
    if actual is None:
        return AuditItemStatus.PENDING
    if Decimal(actual) == Decimal(book):
        return AuditItemStatus.COUNTED
    return AuditItemStatus.DISCREPANCY


class StockAudit(Base):
    """A physical count of one warehouse against the books."""

    __tablename__ = "stock_audits"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    audit_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[AuditStatus] = mapped_column(
        SQLEnum(AuditStatus), default=AuditStatus.IN_PROGRESS, nullable=False, index=True
    )
    warehouse_id: Mapped[int] = mapped_column(
        ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    item_types: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    stock_grades: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    applied_differences: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    drift_policy: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    warehouse: Mapped["Warehouse"] = relationship("Warehouse", lazy="joined")
    items: Mapped[list["StockAuditItem"]] = relationship(
        "StockAuditItem",
        back_populates="audit",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="StockAuditItem.item_name",
    )

    @validates("item_types", "stock_grades")
    def _validate_lists(self, key, value):
        return validate_list(key, value)

    @property
    def is_open(self) -> bool:
        return self.status == AuditStatus.IN_PROGRESS


class StockAuditItem(Base, VersionMixin):
    """One counted line of an audit, with its book snapshot."""

    __tablename__ = "stock_audit_items"
    __table_args__ = (
        UniqueConstraint("audit_id", "item_id", name="uq_audit_item"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    audit_id: Mapped[int] = mapped_column(
        ForeignKey("stock_audits.id", ondelete="CASCADE"), nullable=False, index=True
    )
    item_id: Mapped[int] = mapped_column(
        ForeignKey("stock_items.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    # Catalog snapshot taken when the audit was created
    item_name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    item_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    item_type: Mapped[ItemType] = mapped_column(SQLEnum(ItemType), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    stock_grade: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    book_quantity: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    actual_quantity: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 3), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    audited_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    audited_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    audit: Mapped["StockAudit"] = relationship("StockAudit", back_populates="items")

    @validates("actual_quantity")
    def _validate_actual(self, key, value):
        return non_negative(key, value)

    @validates("book_quantity")
    def _validate_book(self, key, value):
        if self.book_quantity is not None and value != self.book_quantity:
            raise ValueError("book_quantity is a snapshot and cannot change")
        return value

    @property
    def status(self) -> AuditItemStatus:
        return audit_item_status(self.actual_quantity, self.book_quantity)

    @property
    def difference(self) -> Optional[Decimal]:
        if self.actual_quantity is None:
            return None
        return Decimal(self.actual_quantity) - Decimal(self.book_quantity)


def audit_item_status_expr():
    """SQL expression mirroring ``audit_item_status`` for filters and stats."""
    return case(
        (StockAuditItem.actual_quantity.is_(None), AuditItemStatus.PENDING.value),
        (StockAuditItem.actual_quantity == StockAuditItem.book_quantity, AuditItemStatus.COUNTED.value),
        else_=AuditItemStatus.DISCREPANCY.value,
    )

