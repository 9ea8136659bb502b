"""Stock transaction schemas."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from stockledger.models.stock import RequestType, TransactionType
from stockledger.schemas.stock import StockItemRef, WarehouseRef


class StockTransactionResponse(BaseModel):
    """Stock transaction response schema."""

    id: int
    item_id: int
    warehouse_id: int
    transaction_type: TransactionType
    quantity_delta: Decimal
    occurred_at: date
    notes: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None
    linked_transfer_id: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    item: StockItemRef
    warehouse: WarehouseRef

    model_config = {"from_attributes": True}


class StockTransactionCreate(BaseModel):
    """Cart submission.

    Quantities pair with ``stockItemIds`` by position. ``warehouseIds``
    (multi-warehouse mode) pairs the same way and wins over ``warehouseId``.
    Transfers take ``sourceWarehouseId`` and ``destinationWarehouseId``.
    Quantity and warehouse checks happen in the processor so that the error
    can name the offending item.
    """

    stock_item_ids: List[int] = Field(alias="stockItemIds")
    quantities: List[Decimal]
    request_type: RequestType = Field(alias="requestType")
    warehouse_id: Optional[int] = Field(default=None, alias="warehouseId")
    warehouse_ids: Optional[List[Optional[int]]] = Field(default=None, alias="warehouseIds")
    source_warehouse_id: Optional[int] = Field(default=None, alias="sourceWarehouseId")
    destination_warehouse_id: Optional[int] = Field(default=None, alias="destinationWarehouseId")
    notes: Optional[str] = Field(default=None, max_length=500)
    transaction_date: Optional[date] = Field(default=None, alias="transactionDate")

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def check_parallel_lists(self):
        """Every item needs exactly one quantity (and warehouse, when listed)."""
        if len(self.quantities) != len(self.stock_item_ids):
            raise ValueError("stockItemIds and quantities must have the same length")
        if self.warehouse_ids is not None and len(self.warehouse_ids) != len(self.stock_item_ids):
            raise ValueError("stockItemIds and warehouseIds must have the same length")
        return self


class BatchResultResponse(BaseModel):
    """Transactions written by one cart submission."""

    transactions: List[StockTransactionResponse]
    linked_transfer_ids: List[str] = Field(default_factory=list)
