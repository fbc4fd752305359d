"""Reconciliation job and manual action routes."""

from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session

from crm_reconcile.auth import CurrentUser, get_current_user, require_admin
from crm_reconcile.db.dependencies import get_db
from crm_reconcile.reconciliation.context import CorrelationContext
from crm_reconcile.reconciliation.errors import ReconciliationError
from crm_reconcile.routers.errors import to_http_exception
from crm_reconcile.schemas.common import ApiResponse
from crm_reconcile.schemas.records import ActivityRead, DealRead, MergeResult
from crm_reconcile.schemas.reconciliation import (
    ActivityFromDealRequest,
    AutoLinkReport,
    AutoLinkRequest,
    DealFromActivityRequest,
    DuplicateResolutionReport,
    DuplicateResolutionRequest,
    ManualLinkRequest,
    ManualLinkResult,
    MarkDuplicateRequest,
    ReconciliationStatus,
    RollbackReport,
    RollbackRequest,
    UndoResult,
)
from crm_reconcile.services.auto_link import run_auto_link
from crm_reconcile.services.duplicate_resolution import run_duplicate_resolution
from crm_reconcile.services.reconciliation import (
    create_activity_from_deal,
    create_deal_from_activity,
    get_reconciliation_status,
    link_activity_to_deal,
    mark_duplicate_activity,
)
from crm_reconcile.services.transactions import logical_transaction
from crm_reconcile.services.undo import rollback_reconciliation, undo_reconciliation_action

router = APIRouter(prefix="/reconciliation")


@router.post("/duplicate-deals/split", response_model=ApiResponse[DuplicateResolutionReport])
def split_shared_deals(
    payload: DuplicateResolutionRequest,
    user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> ApiResponse[DuplicateResolutionReport]:
    """Run the shared-deal split job, or report its plan when ``dry_run`` is set."""

    try:
        report = run_duplicate_resolution(
            db,
            dry_run=payload.dry_run,
            batch_size=payload.batch_size,
            owner_id=payload.owner_id,
            context=CorrelationContext(user_id=user.user_id),
        )
    except ReconciliationError as exc:
        raise to_http_exception(exc) from exc
    return ApiResponse(data=report)


@router.get("/status", response_model=ApiResponse[ReconciliationStatus])
def get_status(
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[ReconciliationStatus]:
    """Linkage counts for the caller's records, or all records for administrators."""

    owner_id = None if user.is_admin else user.user_id
    return ApiResponse(data=get_reconciliation_status(db, owner_id=owner_id))


@router.post("/link", response_model=ApiResponse[ManualLinkResult])
def link_manually(
    payload: ManualLinkRequest,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[ManualLinkResult]:
    """Link an unlinked activity to a deal owned by the caller."""

    try:
        with logical_transaction(db, user_id=user.user_id) as context:
            result = link_activity_to_deal(
                db,
                activity_id=payload.activity_id,
                deal_id=payload.deal_id,
                user_id=user.user_id,
                confidence_score=payload.confidence_score,
                metadata=payload.metadata,
                context=context,
            )
    except ReconciliationError as exc:
        raise to_http_exception(exc) from exc
    return ApiResponse(data=result)


@router.post("/activities/{activity_id}/deal", response_model=ApiResponse[DealRead], status_code=201)
def create_deal_for_activity(
    payload: DealFromActivityRequest,
    activity_id: int = Path(..., ge=1),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[DealRead]:
    """Create and link a won deal for an orphan activity."""

    try:
        with logical_transaction(db, user_id=user.user_id) as context:
            deal = create_deal_from_activity(
                db,
                activity_id=activity_id,
                user_id=user.user_id,
                overrides=payload,
                context=context,
            )
    except ReconciliationError as exc:
        raise to_http_exception(exc) from exc
    return ApiResponse(data=DealRead.model_validate(deal))


@router.post("/auto-link", response_model=ApiResponse[AutoLinkReport])
def auto_link(
    payload: AutoLinkRequest,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[AutoLinkReport]:
    """Link the caller's orphan sales to near-certain deal matches.

    Administrators may run the pass for one owner or for everyone.
    """

    owner_id = payload.owner_id if user.is_admin else user.user_id
    try:
        report = run_auto_link(
            db,
            mode=payload.mode,
            batch_size=payload.batch_size,
            owner_id=owner_id,
            context=CorrelationContext(user_id=user.user_id),
        )
    except ReconciliationError as exc:
        raise to_http_exception(exc) from exc
    return ApiResponse(data=report)


@router.post("/deals/{deal_id}/activity", response_model=ApiResponse[ActivityRead], status_code=201)
def create_activity_for_deal(
    payload: ActivityFromDealRequest,
    deal_id: int = Path(..., ge=1),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[ActivityRead]:
    """Record the completed sale behind a deal that has no activity."""

    try:
        with logical_transaction(db, user_id=user.user_id) as context:
            activity = create_activity_from_deal(
                db,
                deal_id=deal_id,
                user_id=user.user_id,
                overrides=payload,
                context=context,
            )
    except ReconciliationError as exc:
        raise to_http_exception(exc) from exc
    return ApiResponse(data=ActivityRead.model_validate(activity))


@router.post("/activities/{activity_id}/mark-duplicate", response_model=ApiResponse[MergeResult])
def mark_duplicate(
    payload: MarkDuplicateRequest,
    activity_id: int = Path(..., ge=1),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[MergeResult]:
    """Merge a duplicate activity into the one being kept."""

    try:
        with logical_transaction(db, user_id=user.user_id) as context:
            result = mark_duplicate_activity(
                db,
                activity_id=activity_id,
                keep_id=payload.keep_id,
                user_id=user.user_id,
                metadata=payload.metadata,
                context=context,
            )
    except ReconciliationError as exc:
        raise to_http_exception(exc) from exc
    return ApiResponse(data=result)


@router.post("/audit-entries/{audit_entry_id}/undo", response_model=ApiResponse[UndoResult])
def undo_action(
    audit_entry_id: int = Path(..., ge=1),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[UndoResult]:
    """Revert one audited link, creation or duplicate marking."""

    try:
        with logical_transaction(db, user_id=user.user_id) as context:
            result = undo_reconciliation_action(
                db,
                audit_entry_id,
                user_id=user.user_id,
                is_admin=user.is_admin,
                context=context,
            )
    except ReconciliationError as exc:
        raise to_http_exception(exc) from exc
    return ApiResponse(data=result)


@router.post("/rollback", response_model=ApiResponse[RollbackReport])
def rollback(
    payload: RollbackRequest,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[RollbackReport]:
    """Revert a selection of audited actions, newest first."""

    try:
        report = rollback_reconciliation(
            db,
            user_id=user.user_id,
            is_admin=user.is_admin,
            audit_entry_ids=payload.audit_entry_ids,
            since=payload.since,
            context=CorrelationContext(user_id=user.user_id),
        )
    except ReconciliationError as exc:
        raise to_http_exception(exc) from exc
    return ApiResponse(data=report)
