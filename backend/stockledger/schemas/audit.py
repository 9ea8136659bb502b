"""Stock audit schemas."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from stockledger.models.audit import AuditItemStatus, AuditStatus
from stockledger.models.catalog import ItemType
from stockledger.schemas.pagination import PageInfo
from stockledger.schemas.stock import WarehouseRef


class StockAuditCreate(BaseModel):
    """Create a stock audit over one warehouse."""

    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    audit_date: date
    warehouse_id: Optional[int] = None
    item_types: List[ItemType] = Field(default_factory=lambda: [ItemType.INGREDIENT, ItemType.CONTAINER])
    stock_grades: Optional[List[str]] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must not be blank")
        return v.strip()


class StockAuditResponse(BaseModel):
    """Stock audit header."""

    id: int
    name: str
    description: Optional[str] = None
    audit_date: date
    status: AuditStatus
    warehouse_id: int
    item_types: List[str]
    stock_grades: Optional[List[str]] = None
    created_by: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    applied_differences: bool

    model_config = {"from_attributes": True}


class StockAuditCreated(BaseModel):
    audit: StockAuditResponse
    items_count: int


class StockAuditItemResponse(BaseModel):
    """One audit line. ``status`` and ``difference`` are derived."""

    id: int
    audit_id: int
    item_id: int
    item_name: str
    item_code: Optional[str] = None
    item_type: ItemType
    unit: str
    stock_grade: Optional[str] = None
    book_quantity: Decimal
    actual_quantity: Optional[Decimal] = None
    difference: Optional[Decimal] = None
    status: AuditItemStatus
    notes: Optional[str] = None
    audited_by: Optional[str] = None
    audited_at: Optional[datetime] = None
    version: int

    model_config = {"from_attributes": True}


class AuditStats(BaseModel):
    """Counts over every item of an audit, independent of paging."""

    total: int = 0
    pending: int = 0
    counted: int = 0
    completed: int = 0
    discrepancy: int = 0
    completion_rate: int = 0


class StockAuditDetail(BaseModel):
    audit: StockAuditResponse
    warehouse: WarehouseRef
    items: List[StockAuditItemResponse]
    stats: AuditStats
    pagination: PageInfo


class AuditItemUpdate(BaseModel):
    """Staged change for one audit item.

    ``version`` is the item version the change was based on; when given
    and stale the whole batch is rejected.
    """

    actual_quantity: Optional[Decimal] = None
    notes: Optional[str] = None
    version: Optional[int] = None


class AuditBatchUpdate(BaseModel):
    """Map of audit item id to its staged change."""

    updates: Dict[int, AuditItemUpdate]


class AuditBatchResult(BaseModel):
    updated_count: int


class AuditItemPatch(BaseModel):
    """Single-item count update."""

    actual_quantity: Decimal = Field(..., ge=0)
    notes: Optional[str] = None
    version: Optional[int] = None


class StockAuditAction(BaseModel):
    """Audit state transition."""

    action: Literal["complete"]
    apply_differences: bool = False


class StockAuditCompleted(BaseModel):
    audit: StockAuditResponse
    applied_count: int
    applied_differences: bool
