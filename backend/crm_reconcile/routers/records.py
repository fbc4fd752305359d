"""Merge, restore and active-view routes for activities and deals."""

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session

from crm_reconcile.auth import CurrentUser, get_current_user
from crm_reconcile.db.dependencies import get_db
from crm_reconcile.reconciliation.errors import ReconciliationError
from crm_reconcile.reconciliation.record_tables import RecordTable
from crm_reconcile.routers.errors import to_http_exception
from crm_reconcile.schemas.common import ApiResponse
from crm_reconcile.schemas.records import ActivityRead, DealRead, MergeRequest, MergeResult, RestoreResult
from crm_reconcile.services.records import list_active_records, merge_records, restore_merged_record
from crm_reconcile.services.transactions import logical_transaction

router = APIRouter(prefix="/records/{table}")


@router.get("/active", response_model=ApiResponse[list[ActivityRead] | list[DealRead]])
def get_active_records(
    table: RecordTable = Path(...),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[list[ActivityRead] | list[DealRead]]:
    """List the caller's records that have not been merged away."""

    owner_id = None if user.is_admin else user.user_id
    rows = list_active_records(db, table, owner_id=owner_id, limit=limit, offset=offset)
    if table is RecordTable.ACTIVITIES:
        return ApiResponse(data=[ActivityRead.model_validate(row) for row in rows])
    return ApiResponse(data=[DealRead.model_validate(row) for row in rows])


@router.post("/merge", response_model=ApiResponse[MergeResult])
def merge(
    payload: MergeRequest,
    table: RecordTable = Path(...),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[MergeResult]:
    """Soft-delete records into one survivor."""

    try:
        with logical_transaction(db, user_id=user.user_id) as context:
            result = merge_records(
                db,
                table,
                payload.record_ids,
                user_id=user.user_id,
                keep_id=payload.keep_id,
                metadata=payload.metadata,
                context=context,
            )
    except ReconciliationError as exc:
        raise to_http_exception(exc) from exc
    return ApiResponse(data=result)


@router.post("/{record_id}/restore", response_model=ApiResponse[RestoreResult])
def restore(
    table: RecordTable = Path(...),
    record_id: int = Path(..., ge=1),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[RestoreResult]:
    """Restore a merged record owned by the caller; a zero count means no change."""

    restored_count = restore_merged_record(db, table, record_id, user_id=user.user_id)
    return ApiResponse(data=RestoreResult(table=table.value, record_id=record_id, restored_count=restored_count))
