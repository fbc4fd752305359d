"""Logical transaction lookup routes."""

from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy.orm import Session

from crm_reconcile.auth import CurrentUser, get_current_user
from crm_reconcile.db.dependencies import get_db
from crm_reconcile.schemas.common import ApiResponse
from crm_reconcile.schemas.transaction import LogicalTransactionRead
from crm_reconcile.services.transactions import get_logical_transaction

router = APIRouter(prefix="/transactions")


@router.get("/{transaction_id}", response_model=ApiResponse[LogicalTransactionRead])
def get_transaction(
    transaction_id: str = Path(..., min_length=1, max_length=64),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[LogicalTransactionRead]:
    """Return a correlation marker started by the caller (any marker for administrators)."""

    marker = get_logical_transaction(db, transaction_id)
    if marker is None or (not user.is_admin and marker.started_by != user.user_id):
        raise HTTPException(status_code=404, detail="Transaction not found")
    return ApiResponse(data=LogicalTransactionRead.model_validate(marker))
