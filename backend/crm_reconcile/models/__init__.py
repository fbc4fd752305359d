"""ORM models package exports."""

from crm_reconcile.models.activity import SalesActivity
from crm_reconcile.models.deal import Deal
from crm_reconcile.models.deal_stage_history import DealStageHistory
from crm_reconcile.models.logical_transaction import LogicalTransaction
from crm_reconcile.models.reconciliation_audit_entry import ReconciliationAuditEntry
from crm_reconcile.models.security_event import SecurityEvent
from crm_reconcile.models import append_only as _append_only  # noqa: F401

__all__ = [
    "Deal",
    "DealStageHistory",
    "LogicalTransaction",
    "ReconciliationAuditEntry",
    "SalesActivity",
    "SecurityEvent",
]
