"""Reconciliation audit log routes."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from crm_reconcile.auth import CurrentUser, get_current_user, require_admin
from crm_reconcile.db.dependencies import get_db
from crm_reconcile.reconciliation.context import CorrelationContext
from crm_reconcile.reconciliation.errors import ReconciliationError
from crm_reconcile.routers.errors import to_http_exception
from crm_reconcile.schemas.audit import AuditEntryCreate, AuditEntryCreated, AuditEntryRead, AuditSummaryRow
from crm_reconcile.schemas.common import ApiResponse
from crm_reconcile.services.audit_log import list_audit_entries, record_audit_entry, summarize_audit_entries

router = APIRouter(prefix="/audit-entries")


@router.post("", response_model=ApiResponse[AuditEntryCreated], status_code=201)
def create_audit_entry(
    payload: AuditEntryCreate,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[AuditEntryCreated]:
    """Append one audit entry attributed to the caller."""

    try:
        entry_id = record_audit_entry(
            db,
            action_type=payload.action_type,
            source_table=payload.source_table,
            source_id=payload.source_id,
            target_table=payload.target_table,
            target_id=payload.target_id,
            confidence_score=payload.confidence_score,
            metadata=payload.metadata,
            context=CorrelationContext(user_id=user.user_id),
        )
    except ReconciliationError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc
    db.commit()
    return ApiResponse(data=AuditEntryCreated(id=entry_id))


@router.get("", response_model=ApiResponse[list[AuditEntryRead]])
def get_audit_entries(
    action_type: str | None = Query(default=None),
    source_table: str | None = Query(default=None),
    source_id: int | None = Query(default=None),
    since: datetime | None = Query(default=None),
    until: datetime | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[list[AuditEntryRead]]:
    """List the caller's audit entries, or every entry for administrators."""

    entries = list_audit_entries(
        db,
        requesting_user_id=user.user_id,
        is_admin=user.is_admin,
        action_type=action_type,
        source_table=source_table,
        source_id=source_id,
        since=since,
        until=until,
        limit=limit,
        offset=offset,
    )
    return ApiResponse(data=[AuditEntryRead.model_validate(entry) for entry in entries])


@router.get("/summary", response_model=ApiResponse[list[AuditSummaryRow]])
def get_audit_summary(
    days: int = Query(default=30, ge=1, le=365),
    _: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> ApiResponse[list[AuditSummaryRow]]:
    """Per-day action counts and average confidence."""

    return ApiResponse(data=summarize_audit_entries(db, days=days))
