"""Deal write paths that publish domain events."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from crm_reconcile.domain_events import DealStageChanged, publish, subscribe
from crm_reconcile.models.deal import Deal
from crm_reconcile.models.deal_stage_history import DealStageHistory
from crm_reconcile.reconciliation.errors import MergeConflictError, ReconciliationValidationError
from crm_reconcile.reconciliation.record_tables import RECORD_STATUS_MERGED

logger = logging.getLogger(__name__)


def update_deal_stage(db: Session, deal_id: int, stage: str, *, user_id: str) -> Deal | None:
    """Move an owned deal to ``stage``; unchanged stages publish nothing."""

    deal = db.scalar(select(Deal).where(Deal.id == deal_id, Deal.owner_id == user_id))
    if deal is None:
        return None
    if deal.record_status == RECORD_STATUS_MERGED:
        raise MergeConflictError(f"deals#{deal_id} is merged")

    clean_stage = stage.strip()
    if not clean_stage:
        raise ReconciliationValidationError("Deal stage must not be blank")
    if clean_stage == deal.stage:
        return deal

    now = datetime.now(timezone.utc)
    previous_stage = deal.stage
    deal.stage = clean_stage
    deal.stage_changed_at = now
    deal.updated_at = now
    publish(
        db,
        DealStageChanged(
            deal_id=deal.id,
            from_stage=previous_stage,
            to_stage=clean_stage,
            changed_by=user_id,
            changed_at=now,
        ),
    )
    db.commit()
    db.refresh(deal)
    logger.info(
        "deals.stage_changed deal_id=%d from_stage=%s to_stage=%s user_id=%s",
        deal_id,
        previous_stage,
        clean_stage,
        user_id,
    )
    return deal


def list_stage_history(db: Session, deal_id: int, *, owner_id: str | None = None) -> list[DealStageHistory] | None:
    """Stage transitions for a deal, oldest first; None when the deal is not visible."""

    deal_filters = [Deal.id == deal_id]
    if owner_id is not None:
        deal_filters.append(Deal.owner_id == owner_id)
    if db.scalar(select(Deal.id).where(*deal_filters)) is None:
        return None
    stmt = (
        select(DealStageHistory)
        .where(DealStageHistory.deal_id == deal_id)
        .order_by(DealStageHistory.changed_at.asc(), DealStageHistory.id.asc())
    )
    return list(db.scalars(stmt).all())


def append_stage_history(db: Session, event: DealStageChanged) -> None:
    db.add(
        DealStageHistory(
            deal_id=event.deal_id,
            from_stage=event.from_stage,
            to_stage=event.to_stage,
            changed_by=event.changed_by,
            changed_at=event.changed_at,
        )
    )


subscribe(DealStageChanged, append_stage_history)
