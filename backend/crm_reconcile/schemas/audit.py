"""Reconciliation audit log schemas."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field


class AuditEntryCreate(BaseModel):
    """Insert payload for a manually reported reconciliation action."""

    action_type: str = Field(min_length=1, max_length=64)
    source_table: str = Field(min_length=1, max_length=64)
    source_id: int
    target_table: str | None = Field(default=None, max_length=64)
    target_id: int | None = None
    confidence_score: float | None = Field(default=None, ge=0.0, le=100.0)
    metadata: dict[str, object] = Field(default_factory=dict)


class AuditEntryRead(BaseModel):
    """Serialized audit entry."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    action_type: str
    source_table: str
    source_id: int
    target_table: str | None
    target_id: int | None
    confidence_score: float | None
    metadata_json: dict[str, object]
    user_id: str | None
    transaction_id: str | None
    executed_at: datetime


class AuditEntryCreated(BaseModel):
    id: int


class AuditSummaryRow(BaseModel):
    """Per-day aggregate of audit actions."""

    day: date
    action_type: str
    user_id: str | None
    action_count: int
    avg_confidence: float | None
