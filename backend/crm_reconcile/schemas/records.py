"""Activity, deal, merge and restore schemas."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ActivityRead(BaseModel):
    """Serialized sales activity."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: str
    type: str
    status: str
    client_name: str
    amount: Decimal | None
    date: datetime
    details: str | None
    deal_id: int | None
    record_status: str | None
    merged_into_id: int | None
    merged_at: datetime | None
    created_at: datetime
    updated_at: datetime


class DealRead(BaseModel):
    """Serialized deal."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    company: str
    contact_name: str | None
    contact_email: str | None
    value: Decimal
    stage: str
    status: str
    probability: float | None
    owner_id: str
    expected_close_date: date | None
    description: str | None
    stage_changed_at: datetime | None
    record_status: str | None
    merged_into_id: int | None
    merged_at: datetime | None
    created_at: datetime
    updated_at: datetime


class MergeRequest(BaseModel):
    """Records to soft-delete into one survivor."""

    record_ids: list[int] = Field(min_length=2)
    keep_id: int | None = Field(default=None, ge=1)
    metadata: dict[str, object] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_keep_id(self) -> "MergeRequest":
        if len(set(self.record_ids)) != len(self.record_ids):
            raise ValueError("record_ids must be unique.")
        if self.keep_id is not None and self.keep_id not in self.record_ids:
            raise ValueError("keep_id must be one of record_ids.")
        return self


class MergeResult(BaseModel):
    table: str
    kept_record_id: int
    merged_record_ids: list[int]
    repointed_record_ids: list[int] = Field(default_factory=list)
    audit_entry_ids: list[int] = Field(default_factory=list)


class RestoreResult(BaseModel):
    """Outcome of a restore; ``restored_count`` of 0 means nothing changed."""

    table: str
    record_id: int
    restored_count: int


class DealStageHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    deal_id: int
    from_stage: str | None
    to_stage: str
    changed_by: str | None
    changed_at: datetime
