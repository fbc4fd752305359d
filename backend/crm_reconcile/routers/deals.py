"""Deal stage routes."""

from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy.orm import Session

from crm_reconcile.auth import CurrentUser, get_current_user
from crm_reconcile.db.dependencies import get_db
from crm_reconcile.reconciliation.errors import ReconciliationError
from crm_reconcile.routers.errors import to_http_exception
from crm_reconcile.schemas.common import ApiResponse
from crm_reconcile.schemas.reconciliation import DealStageUpdateRequest
from crm_reconcile.schemas.records import DealRead, DealStageHistoryRead
from crm_reconcile.services.deals import list_stage_history, update_deal_stage

router = APIRouter(prefix="/deals/{deal_id}")


@router.patch("/stage", response_model=ApiResponse[DealRead])
def patch_deal_stage(
    payload: DealStageUpdateRequest,
    deal_id: int = Path(..., ge=1),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[DealRead]:
    """Move a deal to a new stage and record the transition."""

    try:
        deal = update_deal_stage(db, deal_id, payload.stage, user_id=user.user_id)
    except ReconciliationError as exc:
        raise to_http_exception(exc) from exc
    if deal is None:
        raise HTTPException(status_code=404, detail="Deal not found")
    return ApiResponse(data=DealRead.model_validate(deal))


@router.get("/stage-history", response_model=ApiResponse[list[DealStageHistoryRead]])
def get_deal_stage_history(
    deal_id: int = Path(..., ge=1),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[list[DealStageHistoryRead]]:
    """Stage transitions for a deal, oldest first."""

    rows = list_stage_history(db, deal_id, owner_id=None if user.is_admin else user.user_id)
    if rows is None:
        raise HTTPException(status_code=404, detail="Deal not found")
    return ApiResponse(data=[DealStageHistoryRead.model_validate(row) for row in rows])
