"""Reconciliation request/response schemas."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, model_validator


class DuplicateResolutionRequest(BaseModel):
    """Options for one run of the shared-deal split job."""

    dry_run: bool = False
    batch_size: int | None = Field(default=None, ge=1, le=1000)
    owner_id: str | None = Field(default=None, min_length=1)


class DealSplit(BaseModel):
    """One activity moved (or planned to move) onto its own deal."""

    activity_id: int
    original_deal_id: int
    new_deal_id: int | None = None
    new_deal_name: str
    new_deal_value: Decimal
    activity_date: datetime
    audit_entry_id: int | None = None


class DealSplitFailure(BaseModel):
    activity_id: int
    deal_id: int
    error: str


class DuplicateResolutionReport(BaseModel):
    """Summary returned by the batch repair job."""

    mode: Literal["execute", "dry_run"]
    candidates: int = 0
    repaired: int = 0
    skipped: int = 0
    failed: int = 0
    deferred: int = 0
    unresolvable: int = 0
    splits: list[DealSplit] = Field(default_factory=list)
    failures: list[DealSplitFailure] = Field(default_factory=list)
    unresolved: list[DealSplitFailure] = Field(default_factory=list)
    started_at: datetime
    completed_at: datetime | None = None


class ReconciliationStatus(BaseModel):
    """Counts of linkage problems between activities and deals."""

    owner_id: str | None
    orphan_activities: int
    orphan_deals: int
    linked_activities: int
    shared_deal_groups: int


class ManualLinkRequest(BaseModel):
    activity_id: int = Field(ge=1)
    deal_id: int = Field(ge=1)
    confidence_score: float = Field(default=100.0, ge=0.0, le=100.0)
    metadata: dict[str, object] = Field(default_factory=dict)


class ManualLinkResult(BaseModel):
    activity_id: int
    deal_id: int
    audit_entry_id: int
    transaction_id: str | None = None


class DealFromActivityRequest(BaseModel):
    """Optional overrides for a deal created from an orphan activity."""

    name: str | None = Field(default=None, min_length=1)
    company: str | None = Field(default=None, min_length=1)
    value: Decimal | None = Field(default=None, ge=0)
    stage: str | None = Field(default=None, min_length=1)
    expected_close_date: date | None = None
    metadata: dict[str, object] = Field(default_factory=dict)


class DealStageUpdateRequest(BaseModel):
    stage: str = Field(min_length=1, max_length=64)


class AutoLinkRequest(BaseModel):
    """Options for one run of the high-confidence linking pass."""

    mode: Literal["safe", "dry_run"] = "safe"
    batch_size: int | None = Field(default=None, ge=1, le=1000)
    owner_id: str | None = Field(default=None, min_length=1)


class AutoLinkMatch(BaseModel):
    """One orphan activity linked (or planned to link) to a deal."""

    activity_id: int
    deal_id: int
    confidence_score: float
    name_confidence: float
    date_confidence: float
    amount_confidence: float
    audit_entry_id: int | None = None


class AutoLinkFailure(BaseModel):
    activity_id: int
    deal_id: int
    error: str


class AutoLinkReport(BaseModel):
    """Summary returned by the high-confidence linking pass."""

    mode: Literal["safe", "dry_run"]
    orphan_activities: int = 0
    linked: int = 0
    unmatched: int = 0
    skipped: int = 0
    failed: int = 0
    deferred: int = 0
    links: list[AutoLinkMatch] = Field(default_factory=list)
    failures: list[AutoLinkFailure] = Field(default_factory=list)
    started_at: datetime
    completed_at: datetime | None = None


class ActivityFromDealRequest(BaseModel):
    """Optional overrides for an activity created from a deal without one."""

    client_name: str | None = Field(default=None, min_length=1)
    amount: Decimal | None = Field(default=None, ge=0)
    activity_date: datetime | None = None
    details: str | None = None
    metadata: dict[str, object] = Field(default_factory=dict)


class MarkDuplicateRequest(BaseModel):
    keep_id: int = Field(ge=1)
    metadata: dict[str, object] = Field(default_factory=dict)


class UndoResult(BaseModel):
    """Outcome of reverting one audited reconciliation action."""

    audit_entry_id: int
    original_audit_entry_id: int
    original_action_type: str
    effect: str
    source_table: str
    source_id: int
    target_table: str | None = None
    target_id: int | None = None


class RollbackRequest(BaseModel):
    """Audit entries to revert, selected by id and/or execution time."""

    audit_entry_ids: list[int] | None = Field(default=None, min_length=1, max_length=1000)
    since: datetime | None = None

    @model_validator(mode="after")
    def validate_selection(self) -> "RollbackRequest":
        if self.audit_entry_ids is None and self.since is None:
            raise ValueError("audit_entry_ids or since is required.")
        return self


class RollbackFailure(BaseModel):
    audit_entry_id: int
    error: str


class RollbackReport(BaseModel):
    """Summary of a bulk rollback."""

    matched: int = 0
    reverted: int = 0
    denied: int = 0
    skipped: int = 0
    failed: int = 0
    results: list[UndoResult] = Field(default_factory=list)
    failures: list[RollbackFailure] = Field(default_factory=list)
    started_at: datetime
    completed_at: datetime | None = None
