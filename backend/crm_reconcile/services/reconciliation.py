"""Manual reconciliation actions and linkage status."""

from __future__ import annotations

import logging
from datetime import datetime, time, timezone
from decimal import Decimal

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from crm_reconcile.models.activity import SalesActivity
from crm_reconcile.models.deal import Deal
from crm_reconcile.reconciliation.actions import DETERMINISTIC_CONFIDENCE, AuditAction
from crm_reconcile.reconciliation.context import CorrelationContext
from crm_reconcile.reconciliation.errors import MergeConflictError, RecordNotFoundError
from crm_reconcile.reconciliation.record_tables import RECORD_STATUS_ACTIVE, RECORD_STATUS_MERGED, RecordTable
from crm_reconcile.schemas.records import MergeResult
from crm_reconcile.schemas.reconciliation import (
    ActivityFromDealRequest,
    DealFromActivityRequest,
    ManualLinkResult,
    ReconciliationStatus,
)
from crm_reconcile.services.audit_log import record_audit_entry
from crm_reconcile.services.duplicate_resolution import COMPLETED_STATUS, SALE_ACTIVITY_TYPE, WON_STATUS
from crm_reconcile.services.records import active_filter, merge_records

logger = logging.getLogger(__name__)


def get_reconciliation_status(db: Session, *, owner_id: str | None = None) -> ReconciliationStatus:
    """Count orphan activities, orphan deals, linked activities and shared deals."""

    sale_filters = [
        SalesActivity.type == SALE_ACTIVITY_TYPE,
        SalesActivity.status == COMPLETED_STATUS,
        active_filter(SalesActivity),
    ]
    deal_filters = [active_filter(Deal)]
    if owner_id is not None:
        sale_filters.append(SalesActivity.owner_id == owner_id)
        deal_filters.append(Deal.owner_id == owner_id)

    orphan_activities = db.scalar(
        select(func.count(SalesActivity.id))
        .select_from(SalesActivity)
        .outerjoin(Deal, Deal.id == SalesActivity.deal_id)
        .where(*sale_filters, Deal.id.is_(None))
    )
    linked_activities = db.scalar(
        select(func.count(SalesActivity.id))
        .select_from(SalesActivity)
        .join(Deal, Deal.id == SalesActivity.deal_id)
        .where(*sale_filters)
    )
    orphan_deals = db.scalar(
        select(func.count(Deal.id))
        .select_from(Deal)
        .outerjoin(
            SalesActivity,
            and_(SalesActivity.deal_id == Deal.id, active_filter(SalesActivity)),
        )
        .where(*deal_filters, SalesActivity.id.is_(None))
    )
    shared_groups = (
        select(SalesActivity.deal_id)
        .where(*sale_filters, SalesActivity.deal_id.is_not(None))
        .group_by(SalesActivity.deal_id)
        .having(func.count(SalesActivity.id) > 1)
        .subquery()
    )
    shared_deal_groups = db.scalar(select(func.count()).select_from(shared_groups))
    return ReconciliationStatus(
        owner_id=owner_id,
        orphan_activities=int(orphan_activities or 0),
        orphan_deals=int(orphan_deals or 0),
        linked_activities=int(linked_activities or 0),
        shared_deal_groups=int(shared_deal_groups or 0),
    )


def link_activity_to_deal(
    db: Session,
    *,
    activity_id: int,
    deal_id: int,
    user_id: str,
    confidence_score: float = DETERMINISTIC_CONFIDENCE,
    metadata: dict[str, object] | None = None,
    context: CorrelationContext | None = None,
) -> ManualLinkResult:
    """Attach an unlinked activity to a deal, both owned by ``user_id``."""

    context = context or CorrelationContext(user_id=user_id)
    activity = _owned_active(db, SalesActivity, activity_id, user_id)
    deal = _owned_active(db, Deal, deal_id, user_id)
    if activity.deal_id is not None:
        raise MergeConflictError(f"Activity {activity_id} is already linked to deal {activity.deal_id}")

    activity.deal_id = deal.id
    activity.updated_at = datetime.now(timezone.utc)
    audit_entry_id = record_audit_entry(
        db,
        action_type=AuditAction.MANUAL_LINK,
        source_table=RecordTable.ACTIVITIES.value,
        source_id=activity.id,
        target_table=RecordTable.DEALS.value,
        target_id=deal.id,
        confidence_score=confidence_score,
        metadata={
            **dict(metadata or {}),
            "activity_client": activity.client_name,
            "deal_company": deal.company,
            "activity_amount": activity.amount,
            "deal_value": deal.value,
            "activity_date": activity.date,
        },
        context=context,
    )
    db.commit()
    logger.info(
        "reconciliation.manual_link activity_id=%d deal_id=%d user_id=%s transaction_id=%s",
        activity_id,
        deal_id,
        user_id,
        context.transaction_id,
    )
    return ManualLinkResult(
        activity_id=activity_id,
        deal_id=deal_id,
        audit_entry_id=audit_entry_id,
        transaction_id=context.transaction_id,
    )


def create_deal_from_activity(
    db: Session,
    *,
    activity_id: int,
    user_id: str,
    overrides: DealFromActivityRequest | None = None,
    context: CorrelationContext | None = None,
) -> Deal:
    """Create a won deal for an orphan activity and link the two."""

    overrides = overrides or DealFromActivityRequest()
    context = context or CorrelationContext(user_id=user_id)
    activity = _owned_active(db, SalesActivity, activity_id, user_id)
    if activity.deal_id is not None:
        raise MergeConflictError(f"Activity {activity_id} is already linked to deal {activity.deal_id}")

    now = datetime.now(timezone.utc)
    company = overrides.company or activity.client_name
    deal = Deal(
        name=overrides.name or f"{company} Deal",
        company=company,
        value=overrides.value if overrides.value is not None else (activity.amount or Decimal("0")),
        stage=overrides.stage or "signed",
        status=WON_STATUS,
        owner_id=user_id,
        expected_close_date=overrides.expected_close_date or activity.date.date(),
        description=f"Created from sales activity #{activity.id}.",
        created_at=now,
        updated_at=now,
    )
    db.add(deal)
    db.flush()
    activity.deal_id = deal.id
    activity.updated_at = now
    record_audit_entry(
        db,
        action_type=AuditAction.CREATE_DEAL_FROM_ACTIVITY_MANUAL,
        source_table=RecordTable.ACTIVITIES.value,
        source_id=activity.id,
        target_table=RecordTable.DEALS.value,
        target_id=deal.id,
        confidence_score=DETERMINISTIC_CONFIDENCE,
        metadata={
            **overrides.metadata,
            "activity_client": activity.client_name,
            "activity_amount": activity.amount,
            "deal_value": deal.value,
        },
        context=context,
    )
    db.commit()
    db.refresh(deal)
    logger.info(
        "reconciliation.deal_created_from_activity activity_id=%d deal_id=%d user_id=%s",
        activity_id,
        deal.id,
        user_id,
    )
    return deal


def create_activity_from_deal(
    db: Session,
    *,
    deal_id: int,
    user_id: str,
    overrides: ActivityFromDealRequest | None = None,
    context: CorrelationContext | None = None,
) -> SalesActivity:
    """Record the completed sale behind a deal that has no activity yet."""

    overrides = overrides or ActivityFromDealRequest()
    context = context or CorrelationContext(user_id=user_id)
    deal = _owned_active(db, Deal, deal_id, user_id)
    linked = db.scalar(
        select(func.count(SalesActivity.id)).where(SalesActivity.deal_id == deal.id, active_filter(SalesActivity))
    )
    if linked:
        raise MergeConflictError(f"Deal {deal_id} already has linked activities")

    now = datetime.now(timezone.utc)
    occurred_at = overrides.activity_date
    if occurred_at is None and deal.expected_close_date is not None:
        occurred_at = datetime.combine(deal.expected_close_date, time(), tzinfo=timezone.utc)
    activity = SalesActivity(
        owner_id=user_id,
        type=SALE_ACTIVITY_TYPE,
        status=COMPLETED_STATUS,
        client_name=overrides.client_name or deal.company,
        amount=overrides.amount if overrides.amount is not None else deal.value,
        date=occurred_at or now,
        details=overrides.details or f"Created from deal #{deal.id}.",
        deal_id=deal.id,
        record_status=RECORD_STATUS_ACTIVE,
        updated_at=now,
    )
    db.add(activity)
    db.flush()
    record_audit_entry(
        db,
        action_type=AuditAction.CREATE_ACTIVITY_FROM_DEAL,
        source_table=RecordTable.DEALS.value,
        source_id=deal.id,
        target_table=RecordTable.ACTIVITIES.value,
        target_id=activity.id,
        confidence_score=DETERMINISTIC_CONFIDENCE,
        metadata={
            **overrides.metadata,
            "deal_company": deal.company,
            "deal_value": deal.value,
            "close_date": deal.expected_close_date,
            "activity_amount": activity.amount,
        },
        context=context,
    )
    db.commit()
    db.refresh(activity)
    logger.info(
        "reconciliation.activity_created_from_deal deal_id=%d activity_id=%d user_id=%s",
        deal_id,
        activity.id,
        user_id,
    )
    return activity


def mark_duplicate_activity(
    db: Session,
    *,
    activity_id: int,
    keep_id: int,
    user_id: str,
    metadata: dict[str, object] | None = None,
    context: CorrelationContext | None = None,
) -> MergeResult:
    """Merge a duplicate activity into the one being kept; restore reverses it."""

    return merge_records(
        db,
        RecordTable.ACTIVITIES,
        [keep_id, activity_id],
        user_id=user_id,
        keep_id=keep_id,
        metadata={**dict(metadata or {}), "duplicate_of": keep_id},
        context=context,
        action_type=AuditAction.MARK_DUPLICATE_ACTIVITY,
    )


def _owned_active(db: Session, model, record_id: int, user_id: str):
    record = db.scalar(select(model).where(model.id == record_id, model.owner_id == user_id))
    if record is None:
        raise RecordNotFoundError(f"{model.__tablename__}#{record_id} not found or access denied")
    if record.record_status == RECORD_STATUS_MERGED:
        raise MergeConflictError(f"{model.__tablename__}#{record_id} is merged")
    return record
