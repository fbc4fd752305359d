"""SQLAlchemy metadata registry import for Alembic."""

from crm_reconcile.models import (
    Deal,
    DealStageHistory,
    LogicalTransaction,
    ReconciliationAuditEntry,
    SalesActivity,
    SecurityEvent,
)
from crm_reconcile.models.base import Base

__all__ = [
    "Base",
    "Deal",
    "DealStageHistory",
    "LogicalTransaction",
    "ReconciliationAuditEntry",
    "SalesActivity",
    "SecurityEvent",
]
