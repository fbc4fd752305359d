"""Reconciliation domain primitives."""

from crm_reconcile.reconciliation.actions import (
    DETERMINISTIC_CONFIDENCE,
    KNOWN_ACTION_TYPES,
    AuditAction,
    is_known_action,
)
from crm_reconcile.reconciliation.context import SYSTEM_CONTEXT, CorrelationContext
from crm_reconcile.reconciliation.errors import (
    ConfidenceOutOfRangeError,
    InvalidRecordTableError,
    MergeConflictError,
    ReconciliationError,
    ReconciliationValidationError,
    RecordNotFoundError,
    SourceDealUnavailableError,
)
from crm_reconcile.reconciliation.record_tables import (
    RECORD_STATUS_ACTIVE,
    RECORD_STATUS_MERGED,
    RecordTable,
    parse_record_table,
)

__all__ = [
    "DETERMINISTIC_CONFIDENCE",
    "KNOWN_ACTION_TYPES",
    "RECORD_STATUS_ACTIVE",
    "RECORD_STATUS_MERGED",
    "SYSTEM_CONTEXT",
    "AuditAction",
    "ConfidenceOutOfRangeError",
    "CorrelationContext",
    "InvalidRecordTableError",
    "MergeConflictError",
    "ReconciliationError",
    "ReconciliationValidationError",
    "RecordNotFoundError",
    "RecordTable",
    "SourceDealUnavailableError",
    "is_known_action",
    "parse_record_table",
]
