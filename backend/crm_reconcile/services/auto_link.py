"""Link orphan completed sales to deals when the match is near certain.

A match is scored on company name, activity date against the deal's expected
close date, and amount against deal value. Only deals without any active
activity are considered, and each deal receives at most one activity per run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from time import perf_counter

from sqlalchemy import and_, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_reconcile.config import get_settings
from crm_reconcile.models.activity import SalesActivity
from crm_reconcile.models.deal import Deal
from crm_reconcile.reconciliation.actions import AuditAction
from crm_reconcile.reconciliation.context import SYSTEM_CONTEXT, CorrelationContext
from crm_reconcile.reconciliation.errors import ReconciliationError, ReconciliationValidationError
from crm_reconcile.reconciliation.record_tables import RECORD_STATUS_MERGED, RecordTable
from crm_reconcile.reconciliation.similarity import company_similarity, normalize_company_name
from crm_reconcile.schemas.reconciliation import AutoLinkFailure, AutoLinkMatch, AutoLinkReport
from crm_reconcile.services.audit_log import record_audit_entry
from crm_reconcile.services.duplicate_resolution import COMPLETED_STATUS, MAX_BATCH_SIZE, SALE_ACTIVITY_TYPE
from crm_reconcile.services.records import active_filter

logger = logging.getLogger(__name__)

AUTO_LINK_MODES = ("safe", "dry_run")

NAME_WEIGHT = 0.5
DATE_WEIGHT = 0.3
AMOUNT_WEIGHT = 0.2


@dataclass(frozen=True, slots=True)
class MatchScore:
    name: float
    date: float
    amount: float

    @property
    def overall(self) -> float:
        weighted = self.name * NAME_WEIGHT + self.date * DATE_WEIGHT + self.amount * AMOUNT_WEIGHT
        return round(min(max(weighted, 0.0), 100.0), 2)


@dataclass(frozen=True, slots=True)
class LinkProposal:
    activity_id: int
    deal_id: int
    score: MatchScore


def name_confidence(client_name: str | None, company: str | None) -> float:
    if not normalize_company_name(client_name) or not normalize_company_name(company):
        return 0.0
    similarity = company_similarity(client_name, company)
    if similarity == 1.0:
        return 100.0
    if similarity > 0.8:
        return 90.0
    return round(similarity * 100.0, 2)


def date_confidence(activity_date: datetime, close_date: date | None) -> float:
    if close_date is None:
        return 0.0
    days = abs((activity_date.date() - close_date).days)
    if days == 0:
        return 100.0
    if days <= 1:
        return 90.0
    if days <= 3:
        return 70.0
    return 0.0


def amount_confidence(amount: Decimal | None, value: Decimal | None) -> float:
    if amount is None or value is None:
        return 50.0
    if amount == value:
        return 100.0
    difference = abs(amount - value) / max(abs(amount), abs(value))
    if difference <= Decimal("0.1"):
        return 90.0
    if difference <= Decimal("0.3"):
        return 70.0
    return 30.0


def score_match(activity: SalesActivity, deal: Deal) -> MatchScore:
    """Score how likely ``activity`` records the sale behind ``deal``."""

    return MatchScore(
        name=name_confidence(activity.client_name, deal.company),
        date=date_confidence(activity.date, deal.expected_close_date),
        amount=amount_confidence(activity.amount, deal.value),
    )


def propose_links(
    activities: list[SalesActivity],
    deals: list[Deal],
    *,
    min_confidence: float,
) -> list[LinkProposal]:
    """Pair activities with same-owner deals, best scores first, one deal per activity and vice versa."""

    deals_by_owner: dict[str, list[Deal]] = {}
    for deal in deals:
        deals_by_owner.setdefault(deal.owner_id, []).append(deal)

    scored: list[LinkProposal] = []
    for activity in activities:
        for deal in deals_by_owner.get(activity.owner_id, []):
            score = score_match(activity, deal)
            if score.overall >= min_confidence:
                scored.append(LinkProposal(activity_id=activity.id, deal_id=deal.id, score=score))
    scored.sort(key=lambda proposal: (-proposal.score.overall, proposal.activity_id, proposal.deal_id))

    claimed_activities: set[int] = set()
    claimed_deals: set[int] = set()
    proposals: list[LinkProposal] = []
    for proposal in scored:
        if proposal.activity_id in claimed_activities or proposal.deal_id in claimed_deals:
            continue
        claimed_activities.add(proposal.activity_id)
        claimed_deals.add(proposal.deal_id)
        proposals.append(proposal)
    return proposals


def run_auto_link(
    db: Session,
    *,
    mode: str = "safe",
    batch_size: int | None = None,
    owner_id: str | None = None,
    min_confidence: float | None = None,
    context: CorrelationContext | None = None,
) -> AutoLinkReport:
    """Link orphan sales to unclaimed deals above the confidence threshold.

    ``dry_run`` reports the links it would make and writes nothing. At most
    ``batch_size`` orphan activities are considered per run, oldest id first.
    """

    if mode not in AUTO_LINK_MODES:
        raise ReconciliationValidationError(f"Invalid mode {mode!r}; expected one of {AUTO_LINK_MODES}")
    settings = get_settings()
    size = batch_size if batch_size is not None else settings.auto_link_batch_size
    if not 1 <= size <= MAX_BATCH_SIZE:
        raise ReconciliationValidationError(f"Batch size must be between 1 and {MAX_BATCH_SIZE}")
    threshold = min_confidence if min_confidence is not None else settings.auto_link_min_confidence
    if not 0.0 <= threshold <= 100.0:
        raise ReconciliationValidationError("Minimum confidence must lie in [0, 100]")
    context = context or SYSTEM_CONTEXT
    dry_run = mode == "dry_run"

    total_started = perf_counter()
    report = AutoLinkReport(mode=mode, started_at=datetime.now(timezone.utc))
    orphans = _orphan_activities(db, owner_id=owner_id)
    report.orphan_activities = len(orphans)
    batch = orphans[:size]
    report.deferred = len(orphans) - len(batch)
    deals = _unclaimed_deals(db, owner_ids={activity.owner_id for activity in batch})

    proposals = propose_links(batch, deals, min_confidence=threshold)
    report.unmatched = len(batch) - len(proposals)
    for proposal in proposals:
        if dry_run:
            report.links.append(_match(proposal))
        else:
            _apply_link(db, proposal, report, context)

    if dry_run:
        db.rollback()
    report.completed_at = datetime.now(timezone.utc)
    logger.info(
        (
            "reconciliation.auto_link mode=%s owner_id=%s orphans=%d linked=%d unmatched=%d "
            "skipped=%d failed=%d deferred=%d total_ms=%.2f"
        ),
        report.mode,
        owner_id,
        report.orphan_activities,
        report.linked,
        report.unmatched,
        report.skipped,
        report.failed,
        report.deferred,
        (perf_counter() - total_started) * 1000.0,
    )
    return report


def _orphan_activities(db: Session, *, owner_id: str | None) -> list[SalesActivity]:
    stmt = (
        select(SalesActivity)
        .where(
            SalesActivity.type == SALE_ACTIVITY_TYPE,
            SalesActivity.status == COMPLETED_STATUS,
            SalesActivity.deal_id.is_(None),
            active_filter(SalesActivity),
        )
        .order_by(SalesActivity.id)
    )
    if owner_id is not None:
        stmt = stmt.where(SalesActivity.owner_id == owner_id)
    return list(db.scalars(stmt).all())


def _unclaimed_deals(db: Session, *, owner_ids: set[str]) -> list[Deal]:
    if not owner_ids:
        return []
    stmt = (
        select(Deal)
        .outerjoin(SalesActivity, and_(SalesActivity.deal_id == Deal.id, active_filter(SalesActivity)))
        .where(active_filter(Deal), Deal.owner_id.in_(owner_ids), SalesActivity.id.is_(None))
        .order_by(Deal.id)
    )
    return list(db.scalars(stmt).all())


def _apply_link(
    db: Session,
    proposal: LinkProposal,
    report: AutoLinkReport,
    context: CorrelationContext,
) -> None:
    try:
        match = _link(db, proposal, context)
        db.commit()
    except (ReconciliationError, SQLAlchemyError) as exc:
        db.rollback()
        logger.warning(
            "reconciliation.auto_link_failed activity_id=%d deal_id=%d error_type=%s error=%s",
            proposal.activity_id,
            proposal.deal_id,
            type(exc).__name__,
            exc,
        )
        record_audit_entry(
            db,
            action_type=AuditAction.ERROR,
            source_table=RecordTable.ACTIVITIES.value,
            source_id=proposal.activity_id,
            target_table=RecordTable.DEALS.value,
            target_id=proposal.deal_id,
            confidence_score=proposal.score.overall,
            metadata={"operation": "auto_link", "error": str(exc), "error_type": type(exc).__name__},
            context=context,
        )
        db.commit()
        report.failed += 1
        report.failures.append(
            AutoLinkFailure(activity_id=proposal.activity_id, deal_id=proposal.deal_id, error=str(exc))
        )
        return

    if match is None:
        report.skipped += 1
        return
    report.linked += 1
    report.links.append(match)


def _link(db: Session, proposal: LinkProposal, context: CorrelationContext) -> AutoLinkMatch | None:
    activity = db.get(SalesActivity, proposal.activity_id, with_for_update=True)
    if activity is None or activity.deal_id is not None or activity.record_status == RECORD_STATUS_MERGED:
        return None
    deal = db.get(Deal, proposal.deal_id, with_for_update=True)
    if deal is None or deal.record_status == RECORD_STATUS_MERGED:
        return None
    claimed = db.scalar(
        select(func.count(SalesActivity.id)).where(SalesActivity.deal_id == deal.id, active_filter(SalesActivity))
    )
    if claimed:
        return None

    activity.deal_id = deal.id
    activity.updated_at = datetime.now(timezone.utc)
    score = proposal.score
    audit_entry_id = record_audit_entry(
        db,
        action_type=AuditAction.AUTO_LINK_HIGH_CONFIDENCE,
        source_table=RecordTable.ACTIVITIES.value,
        source_id=activity.id,
        target_table=RecordTable.DEALS.value,
        target_id=deal.id,
        confidence_score=score.overall,
        metadata={
            "name_confidence": score.name,
            "date_confidence": score.date,
            "amount_confidence": score.amount,
            "activity_client": activity.client_name,
            "deal_company": deal.company,
            "mode": "safe",
        },
        context=context,
    )
    logger.info(
        "reconciliation.auto_linked activity_id=%d deal_id=%d confidence=%.2f",
        activity.id,
        deal.id,
        score.overall,
    )
    return _match(proposal, audit_entry_id=audit_entry_id)


def _match(proposal: LinkProposal, *, audit_entry_id: int | None = None) -> AutoLinkMatch:
    return AutoLinkMatch(
        activity_id=proposal.activity_id,
        deal_id=proposal.deal_id,
        confidence_score=proposal.score.overall,
        name_confidence=proposal.score.name,
        date_confidence=proposal.score.date,
        amount_confidence=proposal.score.amount,
        audit_entry_id=audit_entry_id,
    )
