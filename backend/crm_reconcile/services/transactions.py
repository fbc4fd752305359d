"""Logical transaction markers for cross-call correlation.

These markers only group calls under one identifier for logging and tracing.
They add no atomicity: callers needing all-or-nothing behavior rely on the
database session's own transaction.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from crm_reconcile.models.logical_transaction import LogicalTransaction
from crm_reconcile.reconciliation.context import CorrelationContext

logger = logging.getLogger(__name__)

STATE_ACTIVE = "active"
STATE_COMMITTED = "committed"
STATE_ROLLED_BACK = "rolled_back"


def begin_logical_transaction(db: Session, *, user_id: str | None = None) -> str:
    """Open a marker and return its fresh opaque id."""

    transaction_id = uuid.uuid4().hex
    db.add(LogicalTransaction(id=transaction_id, state=STATE_ACTIVE, started_by=user_id))
    db.commit()
    logger.info("reconciliation.transaction_begin transaction_id=%s user_id=%s", transaction_id, user_id)
    return transaction_id


def commit_logical_transaction(db: Session, transaction_id: str | None) -> LogicalTransaction | None:
    """Mark an active marker committed; unknown or finished ids are a no-op."""

    return _finish(db, transaction_id, STATE_COMMITTED)


def rollback_logical_transaction(db: Session, transaction_id: str | None) -> LogicalTransaction | None:
    """Mark an active marker rolled back; unknown or finished ids are a no-op."""

    return _finish(db, transaction_id, STATE_ROLLED_BACK)


def get_logical_transaction(db: Session, transaction_id: str) -> LogicalTransaction | None:
    return db.scalar(select(LogicalTransaction).where(LogicalTransaction.id == transaction_id))


@contextmanager
def logical_transaction(db: Session, *, user_id: str | None = None) -> Iterator[CorrelationContext]:
    """Yield a context carrying a new transaction id, closing the marker on exit.

    On error the session is rolled back before the marker is, and the error
    is re-raised.
    """

    transaction_id = begin_logical_transaction(db, user_id=user_id)
    try:
        yield CorrelationContext(user_id=user_id, transaction_id=transaction_id)
    except Exception:
        db.rollback()
        rollback_logical_transaction(db, transaction_id)
        raise
    commit_logical_transaction(db, transaction_id)


def _finish(db: Session, transaction_id: str | None, state: str) -> LogicalTransaction | None:
    if not transaction_id:
        return None
    marker = db.scalar(
        select(LogicalTransaction).where(
            LogicalTransaction.id == transaction_id,
            LogicalTransaction.state == STATE_ACTIVE,
        )
    )
    if marker is None:
        logger.info("reconciliation.transaction_noop transaction_id=%s requested_state=%s", transaction_id, state)
        return None
    marker.state = state
    marker.finished_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(marker)
    logger.info("reconciliation.transaction_%s transaction_id=%s", state, transaction_id)
    return marker
