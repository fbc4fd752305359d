"""Session guard keeping the audit and security logs insert-only."""

from sqlalchemy import event
from sqlalchemy.orm import Session

from crm_reconcile.models.reconciliation_audit_entry import ReconciliationAuditEntry
from crm_reconcile.models.security_event import SecurityEvent

APPEND_ONLY_MODELS = (ReconciliationAuditEntry, SecurityEvent)


class AppendOnlyViolation(RuntimeError):
    """Raised when a flush would update or delete an append-only row."""


@event.listens_for(Session, "before_flush")
def _reject_append_only_mutations(session: Session, flush_context, instances) -> None:
    for obj in session.deleted:
        if isinstance(obj, APPEND_ONLY_MODELS):
            raise AppendOnlyViolation(f"{type(obj).__tablename__} rows cannot be deleted")
    for obj in session.dirty:
        if isinstance(obj, APPEND_ONLY_MODELS) and session.is_modified(obj, include_collections=False):
            raise AppendOnlyViolation(f"{type(obj).__tablename__} rows cannot be updated")
