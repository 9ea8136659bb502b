"""Typed errors raised by the stock ledger services.

Services raise these and never translate them to HTTP themselves; the
handler registered in ``stockledger.main`` renders them as::

    {"detail": "<message>", "error": "<code>", ...extra}

Every error carries enough detail (item ids, available vs requested
quantities, audit status) for the caller to pinpoint the failing entry.
Nothing here is retried by the core.
"""

from typing import Any, Dict


class StockLedgerError(Exception):
    """Base class for all domain errors."""

    status_code: int = 400
    code: str = "stock_ledger_error"

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = extra

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "error": self.code, **self.extra}


class ValidationError(StockLedgerError):
    """Client-correctable input: empty cart, bad quantity, missing warehouse."""

    status_code = 422
    code = "validation_error"


class NotFoundError(StockLedgerError):
    """Unknown audit, audit item, stock item or warehouse."""

    status_code = 404
    code = "not_found"


class InsufficientStockError(StockLedgerError):
    """Outgoing or transfer quantity exceeds current stock.

    ``shortages`` lists every short (item, warehouse) pair, not only the
    first one found.
    """

    status_code = 409
    code = "insufficient_stock"

    def __init__(self, shortages: list):
        self.shortages = shortages
        names = ", ".join(
            f"{s['item_name']} (have {s['available']}, need {s['requested']})"
            for s in shortages
        )
        super().__init__(f"Insufficient stock: {names}", shortages=shortages)


class InvalidStateError(StockLedgerError):
    """Operation not allowed in the audit's current status."""

    status_code = 409
    code = "invalid_state"


class StaleSnapshotError(InvalidStateError):
    """Ledger moved since the audit snapshot was taken."""

    code = "stale_snapshot"


class VersionConflictError(StockLedgerError):
    """A batch commit was based on an outdated audit item version."""

    status_code = 409
    code = "version_conflict"
