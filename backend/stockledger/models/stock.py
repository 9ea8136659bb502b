"""Stock ledger models: WarehouseStock and StockTransaction."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
    event,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from stockledger.db.base import Base
from stockledger.models.validators import non_negative, non_zero


class TransactionType(str, Enum):
    """Kinds of ledger movements."""

    INCOMING = "incoming"  # Goods received
    OUTGOING = "outgoing"  # Consumed or issued
    DISPOSAL = "disposal"  # Spoilage, breakage
    TRANSFER_OUT = "transfer_out"  # Leg leaving the source warehouse
    TRANSFER_IN = "transfer_in"  # Leg arriving at the destination warehouse
    ADJUSTMENT = "adjustment"  # Audit correction, delta = counted - previous


class RequestType(str, Enum):
    """Kinds of cart submissions."""

    INCOMING = "incoming"
    OUTGOING = "outgoing"
    DISPOSAL = "disposal"
    TRANSFER = "transfer"


# Types whose delta must be negative
OUTBOUND_TYPES = frozenset({
    TransactionType.OUTGOING,
    TransactionType.DISPOSAL,
    TransactionType.TRANSFER_OUT,
})


class WarehouseStock(Base):
    """Current quantity per item per warehouse."""

    __tablename__ = "warehouse_stock"
    __table_args__ = (
        UniqueConstraint("item_id", "warehouse_id", name="uq_warehouse_stock_item_warehouse"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    item_id: Mapped[int] = mapped_column(
        ForeignKey("stock_items.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    warehouse_id: Mapped[int] = mapped_column(
        ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    current_quantity: Mapped[Decimal] = mapped_column(
        Numeric(14, 3), default=Decimal("0"), server_default="0", nullable=False
    )
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    item: Mapped["StockItem"] = relationship("StockItem", lazy="joined")
    warehouse: Mapped["Warehouse"] = relationship("Warehouse", lazy="joined")

    @validates("current_quantity")
    def _validate_quantity(self, key, value):
        return non_negative(key, value)


class StockTransaction(Base):
    """Immutable ledger entry (single source of truth for stock changes)."""

    __tablename__ = "stock_transactions"
    __table_args__ = (
        Index("ix_stock_transactions_pair_date", "item_id", "warehouse_id", "occurred_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    item_id: Mapped[int] = mapped_column(
        ForeignKey("stock_items.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    warehouse_id: Mapped[int] = mapped_column(
        ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    transaction_type: Mapped[TransactionType] = mapped_column(
        SQLEnum(TransactionType), nullable=False, index=True
    )
    quantity_delta: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    occurred_at: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    reference_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)  # stock_audit
    reference_id: Mapped[Optional[int]] = mapped_column(nullable=True)
    linked_transfer_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True, index=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    item: Mapped["StockItem"] = relationship("StockItem", lazy="joined")
    warehouse: Mapped["Warehouse"] = relationship("Warehouse", lazy="joined")

    @validates("quantity_delta")
    def _validate_delta(self, key, value):
        return non_zero(key, value)


class LedgerImmutableError(Exception):
    """Raised when code tries to rewrite or remove a ledger entry."""


@event.listens_for(StockTransaction, "before_update")
def _refuse_transaction_update(mapper, connection, target):
    raise LedgerImmutableError(f"Stock transaction {target.id} is append-only")


@event.listens_for(StockTransaction, "before_delete")
def _refuse_transaction_delete(mapper, connection, target):
    raise LedgerImmutableError(f"Stock transaction {target.id} cannot be deleted")


# Forward references
from stockledger.models.catalog import StockItem, Warehouse  # noqa: E402
