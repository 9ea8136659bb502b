"""Stock audit routes.

Audit lifecycle: create (snapshots book quantities) -> record counts
(batch or single item) -> complete, optionally applying differences to
the ledger. Only open audits can be edited or deleted.
"""

from typing import Optional

from fastapi import APIRouter, Query, Request, status

from stockledger.core.config import settings
from stockledger.core.rate_limit import READ_LIMIT, WRITE_LIMIT, limiter
from stockledger.core.rbac import (
    CanCompleteAudit,
    CanCreateAudit,
    CanDeleteAudit,
    CanEditAuditItems,
    CanReadStock,
)
from stockledger.db.session import DbSession
from stockledger.models.audit import AuditItemStatus, AuditStatus
from stockledger.models.catalog import ItemType
from stockledger.schemas.audit import (
    AuditBatchResult,
    AuditBatchUpdate,
    AuditItemPatch,
    AuditStats,
    StockAuditAction,
    StockAuditCompleted,
    StockAuditCreate,
    StockAuditCreated,
    StockAuditDetail,
    StockAuditItemResponse,
    StockAuditResponse,
)
from stockledger.schemas.pagination import PageInfo, PaginatedResponse
from stockledger.schemas.stock import WarehouseRef
from stockledger.services.audit_manager import AuditManager

router = APIRouter()


@router.get("", response_model=PaginatedResponse[StockAuditResponse])
@limiter.limit(READ_LIMIT)
def list_audits(
    request: Request,
    db: DbSession,
    current_user: CanReadStock,
    audit_status: Optional[AuditStatus] = Query(None, alias="status"),
    warehouse_id: Optional[int] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
):
    """List audits, newest audit date first."""
    rows, total = AuditManager(db).list_audits(
        status=audit_status, warehouse_id=warehouse_id, skip=skip, limit=limit
    )
    return PaginatedResponse.create(
        items=[StockAuditResponse.model_validate(r) for r in rows],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.post("", response_model=StockAuditCreated, status_code=status.HTTP_201_CREATED)
@limiter.limit(WRITE_LIMIT)
def create_audit(request: Request, payload: StockAuditCreate, db: DbSession, current_user: CanCreateAudit):
    """Create an audit and snapshot the book quantity of every matching item."""
    audit, items_count = AuditManager(db).create_audit(
        name=payload.name,
        audit_date=payload.audit_date,
        warehouse_id=payload.warehouse_id,
        item_types=payload.item_types,
        stock_grades=payload.stock_grades,
        description=payload.description,
        created_by=current_user.user_id,
    )
    return StockAuditCreated(audit=StockAuditResponse.model_validate(audit), items_count=items_count)


@router.get("/{audit_id}", response_model=StockAuditDetail)
@limiter.limit(READ_LIMIT)
def get_audit(
    request: Request,
    audit_id: int,
    db: DbSession,
    current_user: CanReadStock,
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size, alias="pageSize"),
    item_type: Optional[ItemType] = Query(None, alias="itemType"),
    search: Optional[str] = None,
    item_status: Optional[AuditItemStatus] = Query(None, alias="itemStatus"),
):
    """Audit header, one page of items (ordered by name) and overall stats."""
    detail = AuditManager(db).get_audit_detail(
        audit_id,
        page=page,
        page_size=page_size,
        item_type=item_type,
        search=search,
        status=item_status,
    )
    return StockAuditDetail(
        audit=StockAuditResponse.model_validate(detail["audit"]),
        warehouse=WarehouseRef.model_validate(detail["warehouse"]),
        items=[StockAuditItemResponse.model_validate(i) for i in detail["items"]],
        stats=AuditStats(**detail["stats"]),
        pagination=PageInfo(**detail["pagination"]),
    )


@router.patch("/{audit_id}", response_model=StockAuditCompleted)
@limiter.limit(WRITE_LIMIT)
def update_audit(
    request: Request,
    audit_id: int,
    payload: StockAuditAction,
    db: DbSession,
    current_user: CanCompleteAudit,
):
    """Complete an audit. With apply_differences the ledger is set to the counts."""
    result = AuditManager(db).complete(
        audit_id, apply_differences=payload.apply_differences, actor=current_user.user_id
    )
    return StockAuditCompleted(
        audit=StockAuditResponse.model_validate(result["audit"]),
        applied_count=result["applied_count"],
        applied_differences=result["applied_differences"],
    )


@router.delete("/{audit_id}")
@limiter.limit(WRITE_LIMIT)
def delete_audit(request: Request, audit_id: int, db: DbSession, current_user: CanDeleteAudit):
    """Delete an audit that is still in progress."""
    AuditManager(db).delete_audit(audit_id)
    return {"status": "deleted", "audit_id": audit_id}


# Declared before /items/{audit_item_id} so "batch" is not parsed as an id
@router.patch("/{audit_id}/items/batch", response_model=AuditBatchResult)
@limiter.limit(WRITE_LIMIT)
def batch_update_items(
    request: Request,
    audit_id: int,
    payload: AuditBatchUpdate,
    db: DbSession,
    current_user: CanEditAuditItems,
):
    """Save many counts at once; all are applied or none."""
    updates = {
        item_id: update.model_dump(exclude_unset=True)
        for item_id, update in payload.updates.items()
    }
    return AuditManager(db).commit_batch(audit_id, updates, actor=current_user.user_id)


@router.get("/{audit_id}/items/{audit_item_id}", response_model=StockAuditItemResponse)
@limiter.limit(READ_LIMIT)
def get_audit_item(request: Request, audit_id: int, audit_item_id: int, db: DbSession, current_user: CanReadStock):
    """Get one audit line."""
    return StockAuditItemResponse.model_validate(AuditManager(db).get_item(audit_id, audit_item_id))


@router.patch("/{audit_id}/items/{audit_item_id}", response_model=StockAuditItemResponse)
@limiter.limit(WRITE_LIMIT)
def update_audit_item(
    request: Request,
    audit_id: int,
    audit_item_id: int,
    payload: AuditItemPatch,
    db: DbSession,
    current_user: CanEditAuditItems,
):
    """Record the counted quantity of one audit line."""
    item = AuditManager(db).update_item(
        audit_id,
        audit_item_id,
        actual_quantity=payload.actual_quantity,
        notes=payload.notes,
        expected_version=payload.version,
        actor=current_user.user_id,
    )
    return StockAuditItemResponse.model_validate(item)
