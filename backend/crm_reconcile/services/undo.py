"""Revert audited reconciliation actions, one entry or a selection at a time.

Every revert is checked against the records it touches: the caller must be an
administrator, the user who performed the original action, or the owner of
the affected records. Each successful revert appends an ``UNDO_ACTION`` entry
pointing back at the original, and an entry is never reverted twice.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_reconcile.config import get_settings
from crm_reconcile.models.activity import SalesActivity
from crm_reconcile.models.deal import Deal
from crm_reconcile.models.reconciliation_audit_entry import ReconciliationAuditEntry
from crm_reconcile.reconciliation.actions import DETERMINISTIC_CONFIDENCE, AuditAction
from crm_reconcile.reconciliation.context import CorrelationContext
from crm_reconcile.reconciliation.errors import (
    MergeConflictError,
    ReconciliationError,
    ReconciliationValidationError,
    RecordNotFoundError,
)
from crm_reconcile.reconciliation.record_tables import (
    RECORD_STATUS_ACTIVE,
    RECORD_STATUS_MERGED,
    parse_record_table,
)
from crm_reconcile.schemas.reconciliation import RollbackFailure, RollbackReport, UndoResult
from crm_reconcile.services.audit_log import record_audit_entry
from crm_reconcile.services.security_events import log_security_event

logger = logging.getLogger(__name__)

UNDOABLE_ACTIONS = frozenset(
    {
        AuditAction.AUTO_LINK_HIGH_CONFIDENCE.value,
        AuditAction.MANUAL_LINK.value,
        AuditAction.CREATE_DEAL_FROM_ACTIVITY.value,
        AuditAction.CREATE_DEAL_FROM_ACTIVITY_MANUAL.value,
        AuditAction.CREATE_ACTIVITY_FROM_DEAL.value,
        AuditAction.MARK_DUPLICATE_ACTIVITY.value,
    }
)


class UndoAccessDenied(RecordNotFoundError):
    """Raised when the caller may not revert an entry; reads as not found."""


def undo_reconciliation_action(
    db: Session,
    audit_entry_id: int,
    *,
    user_id: str,
    is_admin: bool = False,
    context: CorrelationContext | None = None,
) -> UndoResult:
    """Revert the action recorded by one audit entry and commit."""

    context = context or CorrelationContext(user_id=user_id)
    entry = db.get(ReconciliationAuditEntry, audit_entry_id)
    if entry is None:
        raise RecordNotFoundError(f"Audit entry {audit_entry_id} not found or access denied")
    try:
        result = _undo_entry(db, entry, user_id=user_id, is_admin=is_admin, context=context)
    except UndoAccessDenied:
        db.rollback()
        _log_denied(db, audit_entry_id, user_id)
        raise
    db.commit()
    return result


def rollback_reconciliation(
    db: Session,
    *,
    user_id: str,
    is_admin: bool = False,
    audit_entry_ids: list[int] | None = None,
    since: datetime | None = None,
    context: CorrelationContext | None = None,
) -> RollbackReport:
    """Revert every undoable entry matching the selection, newest first.

    Non-administrators select entries they performed and system-run entries;
    the latter still pass the per-record ownership check. Each entry is
    reverted in its own commit; a failure is audited as ``ERROR`` and the
    rollback moves on to the next entry.
    """

    max_entries = get_settings().rollback_max_entries
    if audit_entry_ids is None and since is None:
        raise ReconciliationValidationError("Select entries by id or by time")
    if audit_entry_ids is not None and len(audit_entry_ids) > max_entries:
        raise ReconciliationValidationError(f"Too many audit entry ids (max: {max_entries})")
    now = datetime.now(timezone.utc)
    if since is not None and (since if since.tzinfo else since.replace(tzinfo=timezone.utc)) > now:
        raise ReconciliationValidationError("Rollback threshold cannot be in the future")
    context = context or CorrelationContext(user_id=user_id)

    stmt = select(ReconciliationAuditEntry).where(ReconciliationAuditEntry.action_type.in_(UNDOABLE_ACTIONS))
    if audit_entry_ids is not None:
        stmt = stmt.where(ReconciliationAuditEntry.id.in_(audit_entry_ids))
    if since is not None:
        stmt = stmt.where(ReconciliationAuditEntry.executed_at >= since)
    if not is_admin:
        stmt = stmt.where(
            or_(ReconciliationAuditEntry.user_id == user_id, ReconciliationAuditEntry.user_id.is_(None))
        )
    stmt = stmt.order_by(ReconciliationAuditEntry.executed_at.desc(), ReconciliationAuditEntry.id.desc())
    entries = list(db.scalars(stmt.limit(max_entries)).all())

    report = RollbackReport(matched=len(entries), started_at=now)
    for entry in entries:
        entry_id = entry.id
        if _already_undone(db, entry):
            report.skipped += 1
            continue
        try:
            report.results.append(_undo_entry(db, entry, user_id=user_id, is_admin=is_admin, context=context))
            db.commit()
            report.reverted += 1
        except UndoAccessDenied:
            db.rollback()
            _log_denied(db, entry_id, user_id)
            report.denied += 1
        except (ReconciliationError, SQLAlchemyError) as exc:
            db.rollback()
            logger.warning(
                "reconciliation.undo_failed audit_entry_id=%d error_type=%s error=%s",
                entry_id,
                type(exc).__name__,
                exc,
            )
            record_audit_entry(
                db,
                action_type=AuditAction.ERROR,
                source_table=entry.source_table,
                source_id=entry.source_id,
                target_table=entry.target_table,
                target_id=entry.target_id,
                metadata={
                    "operation": "undo_action",
                    "original_audit_entry_id": entry_id,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
                context=context,
            )
            db.commit()
            report.failed += 1
            report.failures.append(RollbackFailure(audit_entry_id=entry_id, error=str(exc)))

    report.completed_at = datetime.now(timezone.utc)
    logger.info(
        "reconciliation.rollback user_id=%s matched=%d reverted=%d denied=%d skipped=%d failed=%d",
        user_id,
        report.matched,
        report.reverted,
        report.denied,
        report.skipped,
        report.failed,
    )
    return report


def _undo_entry(
    db: Session,
    entry: ReconciliationAuditEntry,
    *,
    user_id: str,
    is_admin: bool,
    context: CorrelationContext,
) -> UndoResult:
    if entry.action_type not in UNDOABLE_ACTIONS:
        raise ReconciliationValidationError(f"{entry.action_type} entries cannot be undone")
    if not is_admin and not _may_undo(db, entry, user_id):
        raise UndoAccessDenied(f"Audit entry {entry.id} not found or access denied")
    if _already_undone(db, entry):
        raise MergeConflictError(f"Audit entry {entry.id} has already been undone")

    action = AuditAction(entry.action_type)
    if action in (AuditAction.AUTO_LINK_HIGH_CONFIDENCE, AuditAction.MANUAL_LINK):
        effect = _unlink(db, entry)
    elif action in (AuditAction.CREATE_DEAL_FROM_ACTIVITY, AuditAction.CREATE_DEAL_FROM_ACTIVITY_MANUAL):
        effect = _remove_created_deal(db, entry)
    elif action is AuditAction.CREATE_ACTIVITY_FROM_DEAL:
        effect = _remove_created_activity(db, entry)
    else:
        effect = _restore_duplicate(db, entry)

    undo_entry_id = record_audit_entry(
        db,
        action_type=AuditAction.UNDO_ACTION,
        source_table=entry.source_table,
        source_id=entry.source_id,
        target_table=entry.target_table,
        target_id=entry.target_id,
        confidence_score=DETERMINISTIC_CONFIDENCE,
        metadata={
            "original_audit_entry_id": entry.id,
            "original_action_type": entry.action_type,
            "original_user_id": entry.user_id,
            "effect": effect,
        },
        context=context,
    )
    logger.info(
        "reconciliation.undone audit_entry_id=%d action_type=%s effect=%s user_id=%s",
        entry.id,
        entry.action_type,
        effect,
        user_id,
    )
    return UndoResult(
        audit_entry_id=undo_entry_id,
        original_audit_entry_id=entry.id,
        original_action_type=entry.action_type,
        effect=effect,
        source_table=entry.source_table,
        source_id=entry.source_id,
        target_table=entry.target_table,
        target_id=entry.target_id,
    )


def _may_undo(db: Session, entry: ReconciliationAuditEntry, user_id: str) -> bool:
    if entry.user_id == user_id:
        return True
    references = [(entry.source_table, entry.source_id)]
    if entry.target_table is not None and entry.target_id is not None:
        references.append((entry.target_table, entry.target_id))
    return all(_record_owner(db, table_name, record_id) == user_id for table_name, record_id in references)


def _record_owner(db: Session, table_name: str, record_id: int) -> str | None:
    model = parse_record_table(table_name).model
    return db.scalar(select(model.owner_id).where(model.id == record_id))


def _already_undone(db: Session, entry: ReconciliationAuditEntry) -> bool:
    undo_entries = db.scalars(
        select(ReconciliationAuditEntry).where(
            ReconciliationAuditEntry.action_type == AuditAction.UNDO_ACTION.value,
            ReconciliationAuditEntry.source_table == entry.source_table,
            ReconciliationAuditEntry.source_id == entry.source_id,
        )
    ).all()
    return any(undo.metadata_json.get("original_audit_entry_id") == entry.id for undo in undo_entries)


def _linked_activity(db: Session, entry: ReconciliationAuditEntry) -> SalesActivity:
    activity = db.get(SalesActivity, entry.source_id, with_for_update=True)
    if activity is None:
        raise RecordNotFoundError(f"activities#{entry.source_id} no longer exists")
    if activity.deal_id != entry.target_id:
        raise MergeConflictError(
            f"activities#{entry.source_id} is linked to deal {activity.deal_id}, not {entry.target_id}"
        )
    return activity


def _unlink(db: Session, entry: ReconciliationAuditEntry) -> str:
    activity = _linked_activity(db, entry)
    activity.deal_id = None
    activity.updated_at = datetime.now(timezone.utc)
    return "unlinked"


def _remove_created_deal(db: Session, entry: ReconciliationAuditEntry) -> str:
    activity = _linked_activity(db, entry)
    previous_deal_id = entry.metadata_json.get("previous_deal_id")
    if previous_deal_id is not None:
        previous = db.get(Deal, previous_deal_id, with_for_update=True)
        if previous is None or previous.record_status == RECORD_STATUS_MERGED:
            raise MergeConflictError(f"Previous deal {previous_deal_id} is missing or merged")
    deal = db.get(Deal, entry.target_id, with_for_update=True)
    activity.deal_id = previous_deal_id
    activity.updated_at = datetime.now(timezone.utc)
    db.flush()
    if deal is not None:
        linked = db.scalar(select(func.count(SalesActivity.id)).where(SalesActivity.deal_id == deal.id))
        merged_into = db.scalar(select(func.count(Deal.id)).where(Deal.merged_into_id == deal.id))
        if linked or merged_into:
            raise MergeConflictError(f"deals#{deal.id} is referenced by other records")
        db.delete(deal)
    return "relinked_previous_deal" if previous_deal_id is not None else "deleted_created_deal"


def _remove_created_activity(db: Session, entry: ReconciliationAuditEntry) -> str:
    activity = db.get(SalesActivity, entry.target_id, with_for_update=True)
    if activity is None:
        raise RecordNotFoundError(f"activities#{entry.target_id} no longer exists")
    if activity.deal_id != entry.source_id:
        raise MergeConflictError(f"activities#{activity.id} is no longer linked to deal {entry.source_id}")
    merged_into = db.scalar(select(func.count(SalesActivity.id)).where(SalesActivity.merged_into_id == activity.id))
    if merged_into:
        raise MergeConflictError(f"activities#{activity.id} is referenced by merged records")
    db.delete(activity)
    return "deleted_created_activity"


def _restore_duplicate(db: Session, entry: ReconciliationAuditEntry) -> str:
    activity = db.get(SalesActivity, entry.source_id, with_for_update=True)
    if activity is None or activity.record_status != RECORD_STATUS_MERGED:
        raise MergeConflictError(f"activities#{entry.source_id} is not marked as a duplicate")
    activity.record_status = RECORD_STATUS_ACTIVE
    activity.merged_into_id = None
    activity.merged_at = None
    activity.updated_at = datetime.now(timezone.utc)
    return "restored_duplicate"


def _log_denied(db: Session, audit_entry_id: int, user_id: str) -> None:
    logger.warning("reconciliation.undo_denied audit_entry_id=%d user_id=%s", audit_entry_id, user_id)
    log_security_event(
        db,
        "undo_denied",
        {"audit_entry_id": audit_entry_id},
        user_id=user_id,
        severity="MEDIUM",
    )
