"""SQLAlchemy models."""

from stockledger.models.catalog import ItemType, StockItem, Warehouse
from stockledger.models.stock import (
    LedgerImmutableError,
    RequestType,
    StockTransaction,
    TransactionType,
    WarehouseStock,
)
from stockledger.models.audit import (
    AuditItemStatus,
    AuditStatus,
    StockAudit,
    StockAuditItem,
)

__all__ = [
    "ItemType",
    "StockItem",
    "Warehouse",
    "LedgerImmutableError",
    "RequestType",
    "StockTransaction",
    "TransactionType",
    "WarehouseStock",
    "AuditItemStatus",
    "AuditStatus",
    "StockAudit",
    "StockAuditItem",
]
