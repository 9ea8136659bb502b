# Services module

from stockledger.services.catalog import CatalogAdapter
from stockledger.services.stock_store import WarehouseStockStore
from stockledger.services.transaction_processor import (
    BatchOptions,
    BatchResult,
    CartItem,
    TransactionProcessor,
)
from stockledger.services.audit_manager import AUDIT_REFERENCE_TYPE, AuditManager
from stockledger.services.edit_buffer import AuditEditBuffer, BatchCommitter

__all__ = [
    "CatalogAdapter",
    "WarehouseStockStore",
    "BatchOptions",
    "BatchResult",
    "CartItem",
    "TransactionProcessor",
    "AUDIT_REFERENCE_TYPE",
    "AuditManager",
    "AuditEditBuffer",
    "BatchCommitter",
]
