"""Soft-deletion (merge) and restore services for activities and deals."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from crm_reconcile.config import get_settings
from crm_reconcile.models.activity import SalesActivity
from crm_reconcile.models.deal import Deal
from crm_reconcile.reconciliation.actions import DETERMINISTIC_CONFIDENCE, AuditAction
from crm_reconcile.reconciliation.context import CorrelationContext
from crm_reconcile.reconciliation.errors import (
    MergeConflictError,
    ReconciliationValidationError,
    RecordNotFoundError,
)
from crm_reconcile.reconciliation.record_tables import (
    RECORD_STATUS_ACTIVE,
    RECORD_STATUS_MERGED,
    RecordTable,
    parse_record_table,
)
from crm_reconcile.schemas.records import MergeResult
from crm_reconcile.services.audit_log import record_audit_entry

logger = logging.getLogger(__name__)

# Columns captured in the audit snapshot of a merged record.
_SNAPSHOT_FIELDS: dict[RecordTable, tuple[str, ...]] = {
    RecordTable.ACTIVITIES: ("client_name", "amount", "date", "type", "status", "deal_id", "owner_id"),
    RecordTable.DEALS: ("name", "company", "value", "stage", "status", "owner_id"),
}


def active_filter(model: type[SalesActivity] | type[Deal]):
    """Rows consumers may see without merge handling; NULL status counts as active."""

    return or_(model.record_status == RECORD_STATUS_ACTIVE, model.record_status.is_(None))


def list_active_records(
    db: Session,
    table_name: str | RecordTable,
    *,
    owner_id: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[SalesActivity] | list[Deal]:
    """List records that are not merged away, newest first."""

    table = parse_record_table(table_name)
    model = table.model
    stmt = select(model).where(active_filter(model))
    if owner_id is not None:
        stmt = stmt.where(model.owner_id == owner_id)
    stmt = stmt.order_by(model.created_at.desc(), model.id.desc()).limit(max(1, min(limit, 500))).offset(max(0, offset))
    return list(db.scalars(stmt).all())


def merge_records(
    db: Session,
    table_name: str | RecordTable,
    record_ids: list[int],
    *,
    user_id: str,
    keep_id: int | None = None,
    metadata: Mapping[str, Any] | None = None,
    context: CorrelationContext | None = None,
    action_type: AuditAction = AuditAction.MERGE_RECORDS_MANUAL,
) -> MergeResult:
    """Soft-delete ``record_ids`` into one survivor owned by ``user_id``.

    The survivor must be active and none of the merged records may already be
    merged. Records that were merged into one of the now-merged records are
    re-pointed at the survivor, so merge references never form chains.
    """

    table = parse_record_table(table_name)
    ids = list(dict.fromkeys(int(record_id) for record_id in record_ids))
    max_records = get_settings().merge_max_records
    if len(ids) < 2:
        raise ReconciliationValidationError("At least two distinct records are required to merge")
    if len(ids) > max_records:
        raise ReconciliationValidationError(f"Too many records to merge (max: {max_records})")
    survivor_id = keep_id if keep_id is not None else ids[0]
    if survivor_id not in ids:
        raise ReconciliationValidationError("keep_id must be one of record_ids")

    model = table.model
    context = context or CorrelationContext(user_id=user_id)
    records = list(
        db.scalars(
            select(model).where(model.id.in_(ids), model.owner_id == user_id).with_for_update()
        ).all()
    )
    if len(records) != len(ids):
        raise RecordNotFoundError("Some records were not found or are not owned by the caller")

    by_id = {record.id: record for record in records}
    survivor = by_id[survivor_id]
    if survivor.record_status == RECORD_STATUS_MERGED:
        raise MergeConflictError(f"Merge target {table.value}#{survivor_id} is itself merged")
    merged_away = [by_id[record_id] for record_id in ids if record_id != survivor_id]
    already_merged = [record.id for record in merged_away if record.record_status == RECORD_STATUS_MERGED]
    if already_merged:
        raise MergeConflictError(f"Records already merged: {already_merged}")

    now = datetime.now(timezone.utc)
    merged_ids = [record.id for record in merged_away]
    repointed_ids = list(
        db.scalars(
            select(model.id).where(
                model.merged_into_id.in_(merged_ids),
                model.record_status == RECORD_STATUS_MERGED,
            ).with_for_update()
        ).all()
    )
    if repointed_ids:
        db.execute(
            update(model)
            .where(model.id.in_(repointed_ids))
            .values(merged_into_id=survivor_id, updated_at=now)
            .execution_options(synchronize_session=False)
        )

    audit_entry_ids: list[int] = []
    for record in merged_away:
        snapshot = {field_name: getattr(record, field_name) for field_name in _SNAPSHOT_FIELDS[table]}
        record.record_status = RECORD_STATUS_MERGED
        record.merged_into_id = survivor_id
        record.merged_at = now
        record.updated_at = now
        audit_entry_ids.append(
            record_audit_entry(
                db,
                action_type=action_type,
                source_table=table.value,
                source_id=record.id,
                target_table=table.value,
                target_id=survivor_id,
                confidence_score=DETERMINISTIC_CONFIDENCE,
                metadata={**dict(metadata or {}), "merged_record": snapshot, "repointed_record_ids": repointed_ids},
                context=context,
            )
        )
    survivor.updated_at = now
    db.commit()
    logger.info(
        (
            "reconciliation.records_merged action_type=%s table=%s kept_id=%d merged_ids=%s "
            "repointed_ids=%s user_id=%s"
        ),
        action_type.value,
        table.value,
        survivor_id,
        merged_ids,
        repointed_ids,
        user_id,
    )
    return MergeResult(
        table=table.value,
        kept_record_id=survivor_id,
        merged_record_ids=merged_ids,
        repointed_record_ids=repointed_ids,
        audit_entry_ids=audit_entry_ids,
    )


def restore_merged_record(
    db: Session,
    table_name: str | RecordTable,
    record_id: int,
    *,
    user_id: str,
    context: CorrelationContext | None = None,
) -> int:
    """Return a merged record owned by ``user_id`` to active state.

    Returns the number of restored records. A record that is missing, owned
    by someone else, or not merged yields 0 and is left untouched.
    """

    table = parse_record_table(table_name)
    if table is RecordTable.ACTIVITIES:
        record = _merged_activity_for_owner(db, record_id, user_id)
    else:
        record = _merged_deal_for_owner(db, record_id, user_id)
    if record is None:
        logger.info(
            "reconciliation.restore_noop table=%s record_id=%d user_id=%s",
            table.value,
            record_id,
            user_id,
        )
        return 0

    previous_target = record.merged_into_id
    previous_merged_at = record.merged_at
    record.record_status = RECORD_STATUS_ACTIVE
    record.merged_into_id = None
    record.merged_at = None
    record.updated_at = datetime.now(timezone.utc)
    record_audit_entry(
        db,
        action_type=AuditAction.RESTORE_MERGED_RECORD,
        source_table=table.value,
        source_id=record.id,
        target_table=table.value if previous_target is not None else None,
        target_id=previous_target,
        confidence_score=DETERMINISTIC_CONFIDENCE,
        metadata={"previous_merged_into": previous_target, "previous_merged_at": previous_merged_at},
        context=context or CorrelationContext(user_id=user_id),
    )
    db.commit()
    logger.info(
        "reconciliation.record_restored table=%s record_id=%d previous_merged_into=%s user_id=%s",
        table.value,
        record.id,
        previous_target,
        user_id,
    )
    return 1


def _merged_activity_for_owner(db: Session, record_id: int, user_id: str) -> SalesActivity | None:
    return db.scalar(
        select(SalesActivity).where(
            SalesActivity.id == record_id,
            SalesActivity.owner_id == user_id,
            SalesActivity.record_status == RECORD_STATUS_MERGED,
        )
    )


def _merged_deal_for_owner(db: Session, record_id: int, user_id: str) -> Deal | None:
    return db.scalar(
        select(Deal).where(
            Deal.id == record_id,
            Deal.owner_id == user_id,
            Deal.record_status == RECORD_STATUS_MERGED,
        )
    )
