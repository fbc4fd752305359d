"""Reconciliation audit log model."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from crm_reconcile.models.base import Base, IdMixin


class ReconciliationAuditEntry(Base, IdMixin):
    """Immutable record of one automatic or manual reconciliation decision."""

    __tablename__ = "reconciliation_audit_log"

    action_type: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    source_table: Mapped[str] = mapped_column(String(64), nullable=False)
    source_id: Mapped[int] = mapped_column(Integer, nullable=False)
    target_table: Mapped[str | None] = mapped_column(String(64), nullable=True)
    target_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    confidence_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    metadata_json: Mapped[dict[str, object]] = mapped_column(JSON, default=dict, nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(255), index=True, nullable=True)
    transaction_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    executed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        index=True,
        nullable=False,
    )
