"""Split completed sales that incorrectly share one deal into independent deals.

The earliest completed sale referencing a deal keeps it. Every later sale on
that deal gets a clone of the deal carrying its own amount and date. Each
split commits on its own, so a rerun only sees deals that are still shared.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from time import perf_counter

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_reconcile.config import get_settings
from crm_reconcile.models.activity import SalesActivity
from crm_reconcile.models.deal import Deal
from crm_reconcile.reconciliation.actions import DETERMINISTIC_CONFIDENCE, AuditAction
from crm_reconcile.reconciliation.context import SYSTEM_CONTEXT, CorrelationContext
from crm_reconcile.reconciliation.errors import (
    ReconciliationError,
    ReconciliationValidationError,
    SourceDealUnavailableError,
)
from crm_reconcile.reconciliation.record_tables import RECORD_STATUS_ACTIVE, RECORD_STATUS_MERGED, RecordTable
from crm_reconcile.schemas.reconciliation import DealSplit, DealSplitFailure, DuplicateResolutionReport
from crm_reconcile.services.audit_log import record_audit_entry
from crm_reconcile.services.records import active_filter

logger = logging.getLogger(__name__)

SALE_ACTIVITY_TYPE = "sale"
COMPLETED_STATUS = "completed"
WON_STATUS = "won"
MAX_BATCH_SIZE = 1000

# Deal columns carried over unchanged onto a split deal.
_COPIED_DEAL_FIELDS = (
    "company",
    "contact_name",
    "contact_email",
    "stage",
    "probability",
    "owner_id",
    "expected_close_date",
    "stage_changed_at",
)


@dataclass(frozen=True, slots=True)
class SharedDealCandidate:
    """Snapshot of a completed sale whose deal is referenced by other sales."""

    activity_id: int
    deal_id: int
    date: datetime
    amount: Decimal | None
    client_name: str
    deal_available: bool = True


def find_shared_deal_candidates(db: Session, *, owner_id: str | None = None) -> list[SharedDealCandidate]:
    """Return completed sales sharing a deal id, most recent first.

    Candidates whose deal is missing or merged are returned with
    ``deal_available`` unset so callers can report them without cloning.
    """

    filters = [
        SalesActivity.type == SALE_ACTIVITY_TYPE,
        SalesActivity.status == COMPLETED_STATUS,
        SalesActivity.deal_id.is_not(None),
        active_filter(SalesActivity),
    ]
    if owner_id is not None:
        filters.append(SalesActivity.owner_id == owner_id)

    shared_deal_ids = (
        select(SalesActivity.deal_id)
        .where(*filters)
        .group_by(SalesActivity.deal_id)
        .having(func.count(SalesActivity.id) > 1)
    )
    rows = db.execute(
        select(
            SalesActivity.id,
            SalesActivity.deal_id,
            SalesActivity.date,
            SalesActivity.amount,
            SalesActivity.client_name,
            Deal.id,
            Deal.record_status,
        )
        .outerjoin(Deal, Deal.id == SalesActivity.deal_id)
        .where(*filters, SalesActivity.deal_id.in_(shared_deal_ids))
        .order_by(SalesActivity.date.desc(), SalesActivity.id.desc())
    ).all()
    return [
        SharedDealCandidate(
            activity_id=activity_id,
            deal_id=deal_id,
            date=activity_date,
            amount=amount,
            client_name=client_name,
            deal_available=found_deal_id is not None and deal_status != RECORD_STATUS_MERGED,
        )
        for activity_id, deal_id, activity_date, amount, client_name, found_deal_id, deal_status in rows
    ]


def earliest_activity_ids(candidates: Iterable[SharedDealCandidate]) -> set[int]:
    """Return, per shared deal, the id of the earliest activity (ties go to the lowest id)."""

    earliest: dict[int, SharedDealCandidate] = {}
    for candidate in candidates:
        current = earliest.get(candidate.deal_id)
        if current is None or (candidate.date, candidate.activity_id) < (current.date, current.activity_id):
            earliest[candidate.deal_id] = candidate
    return {candidate.activity_id for candidate in earliest.values()}


def build_split_deal(source: Deal, candidate: SharedDealCandidate, *, now: datetime | None = None) -> Deal:
    """Clone ``source`` into an independent won deal representing ``candidate``."""

    stamp = now or datetime.now(timezone.utc)
    clone = Deal(
        name=split_deal_name(source, candidate.client_name),
        value=candidate.amount if candidate.amount is not None else source.value,
        status=WON_STATUS,
        description=_provenance_description(source, candidate),
        record_status=RECORD_STATUS_ACTIVE,
        created_at=candidate.date,
        updated_at=stamp,
    )
    for field_name in _COPIED_DEAL_FIELDS:
        setattr(clone, field_name, getattr(source, field_name))
    return clone


def split_deal_name(source: Deal, client_name: str | None) -> str:
    client = (client_name or "").strip()
    if client and client.casefold() != (source.company or "").strip().casefold():
        return f"{client} Deal"
    return f"{source.name} (Copy)"


def run_duplicate_resolution(
    db: Session,
    *,
    dry_run: bool = False,
    batch_size: int | None = None,
    owner_id: str | None = None,
    context: CorrelationContext | None = None,
) -> DuplicateResolutionReport:
    """Detect shared deals and split them, or only report the plan when ``dry_run``.

    At most ``batch_size`` splits are attempted per run; the rest are counted
    as deferred and picked up by the next run.
    """

    size = batch_size if batch_size is not None else get_settings().duplicate_resolution_batch_size
    if not 1 <= size <= MAX_BATCH_SIZE:
        raise ReconciliationValidationError(f"Batch size must be between 1 and {MAX_BATCH_SIZE}")
    context = context or SYSTEM_CONTEXT

    total_started = perf_counter()
    report = DuplicateResolutionReport(
        mode="dry_run" if dry_run else "execute",
        started_at=datetime.now(timezone.utc),
    )
    candidates = find_shared_deal_candidates(db, owner_id=owner_id)
    keepers = earliest_activity_ids(candidates)
    report.candidates = len(candidates)

    attempted = 0
    for candidate in candidates:
        if candidate.activity_id in keepers:
            report.skipped += 1
            continue
        if not candidate.deal_available:
            _report_unresolvable(candidate, report)
            continue
        if attempted >= size:
            report.deferred += 1
            continue
        attempted += 1
        if dry_run:
            _plan_split(db, candidate, report)
        else:
            _apply_split(db, candidate, report, context)

    if dry_run:
        db.rollback()
    report.completed_at = datetime.now(timezone.utc)
    logger.info(
        (
            "reconciliation.duplicate_resolution mode=%s owner_id=%s candidates=%d repaired=%d "
            "skipped=%d failed=%d deferred=%d unresolvable=%d total_ms=%.2f"
        ),
        report.mode,
        owner_id,
        report.candidates,
        report.repaired,
        report.skipped,
        report.failed,
        report.deferred,
        report.unresolvable,
        (perf_counter() - total_started) * 1000.0,
    )
    return report


def _report_unresolvable(candidate: SharedDealCandidate, report: DuplicateResolutionReport) -> None:
    # Reported on every run; never audited, so reruns add no entries.
    logger.warning(
        "reconciliation.split_unresolvable activity_id=%d deal_id=%d",
        candidate.activity_id,
        candidate.deal_id,
    )
    report.unresolvable += 1
    report.unresolved.append(
        DealSplitFailure(
            activity_id=candidate.activity_id,
            deal_id=candidate.deal_id,
            error=f"Deal {candidate.deal_id} is missing or merged",
        )
    )


def _plan_split(db: Session, candidate: SharedDealCandidate, report: DuplicateResolutionReport) -> None:
    source = db.get(Deal, candidate.deal_id)
    if not _is_clone_source(source):
        report.failed += 1
        report.failures.append(
            DealSplitFailure(
                activity_id=candidate.activity_id,
                deal_id=candidate.deal_id,
                error=f"Deal {candidate.deal_id} is missing or merged",
            )
        )
        return
    report.splits.append(
        DealSplit(
            activity_id=candidate.activity_id,
            original_deal_id=candidate.deal_id,
            new_deal_name=split_deal_name(source, candidate.client_name),
            new_deal_value=candidate.amount if candidate.amount is not None else source.value,
            activity_date=candidate.date,
        )
    )


def _apply_split(
    db: Session,
    candidate: SharedDealCandidate,
    report: DuplicateResolutionReport,
    context: CorrelationContext,
) -> None:
    try:
        split = _split_activity(db, candidate, context)
        db.commit()
    except (ReconciliationError, SQLAlchemyError) as exc:
        db.rollback()
        logger.warning(
            "reconciliation.split_failed activity_id=%d deal_id=%d error_type=%s error=%s",
            candidate.activity_id,
            candidate.deal_id,
            type(exc).__name__,
            exc,
        )
        record_audit_entry(
            db,
            action_type=AuditAction.ERROR,
            source_table=RecordTable.ACTIVITIES.value,
            source_id=candidate.activity_id,
            target_table=RecordTable.DEALS.value,
            target_id=candidate.deal_id,
            metadata={
                "operation": "split_shared_deal",
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
            context=context,
        )
        db.commit()
        report.failed += 1
        report.failures.append(
            DealSplitFailure(activity_id=candidate.activity_id, deal_id=candidate.deal_id, error=str(exc))
        )
        return

    if split is None:
        report.skipped += 1
        return
    report.repaired += 1
    report.splits.append(split)


def _split_activity(
    db: Session,
    candidate: SharedDealCandidate,
    context: CorrelationContext,
) -> DealSplit | None:
    activity = db.get(SalesActivity, candidate.activity_id, with_for_update=True)
    if activity is None or activity.deal_id != candidate.deal_id:
        # Repointed by someone else since detection.
        return None
    source = db.get(Deal, candidate.deal_id, with_for_update=True)
    if not _is_clone_source(source):
        raise SourceDealUnavailableError(f"Deal {candidate.deal_id} is missing or merged")

    now = datetime.now(timezone.utc)
    new_deal = build_split_deal(source, candidate, now=now)
    db.add(new_deal)
    db.flush()

    activity.deal_id = new_deal.id
    activity.updated_at = now
    audit_entry_id = record_audit_entry(
        db,
        action_type=AuditAction.CREATE_DEAL_FROM_ACTIVITY,
        source_table=RecordTable.ACTIVITIES.value,
        source_id=activity.id,
        target_table=RecordTable.DEALS.value,
        target_id=new_deal.id,
        confidence_score=DETERMINISTIC_CONFIDENCE,
        metadata={
            "rule": "shared_deal_split",
            "previous_deal_id": candidate.deal_id,
            "new_deal_id": new_deal.id,
            "activity_date": candidate.date,
            "amount": candidate.amount,
        },
        context=context,
    )
    logger.info(
        "reconciliation.split_applied activity_id=%d previous_deal_id=%d new_deal_id=%d",
        activity.id,
        candidate.deal_id,
        new_deal.id,
    )
    return DealSplit(
        activity_id=activity.id,
        original_deal_id=candidate.deal_id,
        new_deal_id=new_deal.id,
        new_deal_name=new_deal.name,
        new_deal_value=new_deal.value,
        activity_date=candidate.date,
        audit_entry_id=audit_entry_id,
    )


def _is_clone_source(deal: Deal | None) -> bool:
    return deal is not None and deal.record_status != RECORD_STATUS_MERGED


def _provenance_description(source: Deal, candidate: SharedDealCandidate) -> str:
    note = f"Split from deal #{source.id} for sales activity #{candidate.activity_id}."
    base = (source.description or "").strip()
    return f"{base}\n\n{note}" if base else note
