"""Stock transaction routes.

POST submits a cart; every line succeeds or the whole cart is rejected
with an error naming the offending item(s).
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Query, Request, status

from stockledger.core.config import settings
from stockledger.core.rate_limit import READ_LIMIT, WRITE_LIMIT, limiter
from stockledger.core.rbac import CanPostTransaction, CanReadStock
from stockledger.db.session import DbSession
from stockledger.models.stock import TransactionType
from stockledger.schemas.pagination import PaginatedResponse
from stockledger.schemas.transaction import (
    BatchResultResponse,
    StockTransactionCreate,
    StockTransactionResponse,
)
from stockledger.services.transaction_processor import (
    BatchOptions,
    CartItem,
    TransactionProcessor,
)

router = APIRouter()


@router.get("", response_model=PaginatedResponse[StockTransactionResponse])
@limiter.limit(READ_LIMIT)
def list_transactions(
    request: Request,
    db: DbSession,
    current_user: CanReadStock,
    stock_item_id: Optional[int] = Query(None, alias="stockItemId"),
    stock_item_ids: Optional[List[int]] = Query(None, alias="stockItemIds"),
    transaction_type: Optional[TransactionType] = Query(None, alias="transactionType"),
    warehouse_id: Optional[int] = Query(None, alias="warehouseId"),
    selected_date: Optional[date] = Query(None, alias="selectedDate"),
    date_from: Optional[date] = Query(None, alias="dateFrom"),
    date_to: Optional[date] = Query(None, alias="dateTo"),
    item_name: Optional[str] = Query(None, alias="itemName"),
    reference_type: Optional[str] = Query(None, alias="referenceType"),
    reference_id: Optional[int] = Query(None, alias="referenceId"),
    skip: int = Query(0, ge=0),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
):
    """Filtered ledger entries, newest first."""
    rows, total = TransactionProcessor(db).list_transactions(
        item_id=stock_item_id,
        item_ids=stock_item_ids,
        transaction_type=transaction_type,
        warehouse_id=warehouse_id,
        occurred_on=selected_date,
        date_from=date_from,
        date_to=date_to,
        search=item_name,
        reference_type=reference_type,
        reference_id=reference_id,
        skip=skip,
        limit=limit,
    )
    return PaginatedResponse.create(
        items=[StockTransactionResponse.model_validate(r) for r in rows],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.post("", response_model=BatchResultResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(WRITE_LIMIT)
def create_transactions(
    request: Request,
    payload: StockTransactionCreate,
    db: DbSession,
    current_user: CanPostTransaction,
):
    """Apply a cart of incoming, outgoing, disposal or transfer lines."""
    items = [
        CartItem(
            item_id=item_id,
            quantity=quantity,
            warehouse_id=payload.warehouse_ids[index] if payload.warehouse_ids else None,
        )
        for index, (item_id, quantity) in enumerate(zip(payload.stock_item_ids, payload.quantities))
    ]
    options = BatchOptions(
        warehouse_id=payload.warehouse_id,
        source_warehouse_id=payload.source_warehouse_id,
        destination_warehouse_id=payload.destination_warehouse_id,
        notes=payload.notes,
        occurred_at=payload.transaction_date,
        created_by=current_user.user_id,
    )
    result = TransactionProcessor(db).process_batch(items, payload.request_type, options)
    return BatchResultResponse(
        transactions=[StockTransactionResponse.model_validate(t) for t in result.transactions],
        linked_transfer_ids=result.linked_transfer_ids,
    )


@router.get("/transfers/{linked_transfer_id}", response_model=List[StockTransactionResponse])
@limiter.limit(READ_LIMIT)
def get_transfer(request: Request, linked_transfer_id: str, db: DbSession, current_user: CanReadStock):
    """Both legs of a warehouse transfer."""
    return [
        StockTransactionResponse.model_validate(t)
        for t in TransactionProcessor(db).get_transfer(linked_transfer_id)
    ]
