"""Append-only reconciliation audit log writer and query services."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from crm_reconcile.config import get_settings
from crm_reconcile.models.reconciliation_audit_entry import ReconciliationAuditEntry
from crm_reconcile.reconciliation.actions import AuditAction, is_known_action
from crm_reconcile.reconciliation.context import CorrelationContext
from crm_reconcile.reconciliation.errors import ConfidenceOutOfRangeError, ReconciliationValidationError
from crm_reconcile.schemas.audit import AuditSummaryRow

logger = logging.getLogger(__name__)

_MAX_PAGE_SIZE = 500


def record_audit_entry(
    db: Session,
    *,
    action_type: AuditAction | str,
    source_table: str,
    source_id: int,
    target_table: str | None = None,
    target_id: int | None = None,
    confidence_score: float | None = None,
    metadata: Mapping[str, Any] | None = None,
    context: CorrelationContext | None = None,
) -> int:
    """Append one audit entry inside the caller's transaction and return its id.

    The entry is flushed, not committed: it becomes durable together with the
    reconciliation action it describes. Storage failures propagate unchanged.
    """

    action = action_type.value if isinstance(action_type, AuditAction) else str(action_type).strip()
    if not action:
        raise ReconciliationValidationError("Audit action type must not be empty")
    if confidence_score is not None and not 0.0 <= float(confidence_score) <= 100.0:
        raise ConfidenceOutOfRangeError(confidence_score)
    if not is_known_action(action):
        logger.warning("reconciliation.audit_unknown_action action_type=%s source_table=%s", action, source_table)

    context = context or CorrelationContext()
    details = dict(metadata or {})
    if context.transaction_id is not None:
        details.setdefault("transaction_id", context.transaction_id)

    entry = ReconciliationAuditEntry(
        action_type=action,
        source_table=source_table,
        source_id=source_id,
        target_table=target_table,
        target_id=target_id,
        confidence_score=float(confidence_score) if confidence_score is not None else None,
        metadata_json=json_safe(details),
        user_id=context.user_id,
        transaction_id=context.transaction_id,
        executed_at=datetime.now(timezone.utc),
    )
    db.add(entry)
    db.flush()
    logger.info(
        "reconciliation.audit_recorded id=%d action_type=%s source=%s:%s target=%s:%s user_id=%s",
        entry.id,
        action,
        source_table,
        source_id,
        target_table,
        target_id,
        context.user_id,
    )
    return entry.id


def list_audit_entries(
    db: Session,
    *,
    requesting_user_id: str,
    is_admin: bool = False,
    action_type: str | None = None,
    source_table: str | None = None,
    source_id: int | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[ReconciliationAuditEntry]:
    """List audit entries visible to the caller, newest first.

    Non-admin callers only see entries they acted on themselves.
    """

    stmt = select(ReconciliationAuditEntry)
    if not is_admin:
        stmt = stmt.where(ReconciliationAuditEntry.user_id == requesting_user_id)
    if action_type is not None:
        stmt = stmt.where(ReconciliationAuditEntry.action_type == action_type)
    if source_table is not None:
        stmt = stmt.where(ReconciliationAuditEntry.source_table == source_table)
    if source_id is not None:
        stmt = stmt.where(ReconciliationAuditEntry.source_id == source_id)
    if since is not None:
        stmt = stmt.where(ReconciliationAuditEntry.executed_at >= since)
    if until is not None:
        stmt = stmt.where(ReconciliationAuditEntry.executed_at < until)
    stmt = (
        stmt.order_by(ReconciliationAuditEntry.executed_at.desc(), ReconciliationAuditEntry.id.desc())
        .limit(max(1, min(limit, _MAX_PAGE_SIZE)))
        .offset(max(0, offset))
    )
    return list(db.scalars(stmt).all())


def summarize_audit_entries(db: Session, *, days: int = 30) -> list[AuditSummaryRow]:
    """Aggregate recent audit entries per day, action type and user."""

    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    rows = db.execute(
        select(
            ReconciliationAuditEntry.executed_at,
            ReconciliationAuditEntry.action_type,
            ReconciliationAuditEntry.user_id,
            ReconciliationAuditEntry.confidence_score,
        ).where(ReconciliationAuditEntry.executed_at >= cutoff)
    ).all()

    buckets: dict[tuple[Any, str, str | None], list[float | None]] = {}
    for executed_at, action_type, user_id, confidence_score in rows:
        key = (executed_at.date(), action_type, user_id)
        buckets.setdefault(key, []).append(confidence_score)

    summary: list[AuditSummaryRow] = []
    for (day, action_type, user_id), scores in buckets.items():
        present = [score for score in scores if score is not None]
        summary.append(
            AuditSummaryRow(
                day=day,
                action_type=action_type,
                user_id=user_id,
                action_count=len(scores),
                avg_confidence=round(sum(present) / len(present), 2) if present else None,
            )
        )
    summary.sort(key=lambda row: (row.day, row.action_count), reverse=True)
    return summary


def purge_expired_audit_entries(db: Session, *, retention_days: int | None = None) -> int:
    """Delete entries older than the retention window; the only deletion path."""

    days = retention_days if retention_days is not None else get_settings().audit_retention_days
    if days < 1:
        raise ReconciliationValidationError("Retention window must be at least one day")
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    expired = db.scalar(
        select(func.count(ReconciliationAuditEntry.id)).where(ReconciliationAuditEntry.executed_at < cutoff)
    )
    db.execute(
        delete(ReconciliationAuditEntry)
        .where(ReconciliationAuditEntry.executed_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    logger.info("reconciliation.audit_purged retention_days=%d purged=%d", days, expired or 0)
    return int(expired or 0)


def json_safe(value: Any) -> Any:
    """Convert ``value`` into something a JSON column accepts; unknown types become strings."""

    if isinstance(value, Mapping):
        return {str(key): json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [json_safe(item) for item in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)
