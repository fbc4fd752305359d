"""Security event sink, separate from the reconciliation audit log."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from crm_reconcile.db.session import SessionLocal
from crm_reconcile.models.security_event import SecurityEvent
from crm_reconcile.reconciliation.errors import ReconciliationValidationError
from crm_reconcile.services.audit_log import json_safe

logger = logging.getLogger(__name__)

SEVERITIES = ("LOW", "MEDIUM", "HIGH", "CRITICAL")


def log_security_event(
    db: Session,
    event_type: str,
    metadata: Mapping[str, Any] | None = None,
    *,
    user_id: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    severity: str = "LOW",
) -> None:
    """Append one security event and commit it."""

    clean_type = event_type.strip()
    if not clean_type:
        raise ReconciliationValidationError("Security event type must not be empty")
    clean_severity = severity.strip().upper()
    if clean_severity not in SEVERITIES:
        raise ReconciliationValidationError(f"Unknown severity: {severity!r}")

    db.add(
        SecurityEvent(
            event_type=clean_type,
            severity=clean_severity,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent[:512] if user_agent else None,
            metadata_json=json_safe(metadata or {}),
        )
    )
    db.commit()
    logger.info(
        "security.event_logged event_type=%s severity=%s user_id=%s ip_address=%s",
        clean_type,
        clean_severity,
        user_id,
        ip_address,
    )


def record_security_event_job(
    event_type: str,
    metadata: Mapping[str, Any] | None = None,
    *,
    user_id: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    severity: str = "LOW",
) -> None:
    """Write a security event in its own session, for use as a background task."""

    db = SessionLocal()
    try:
        log_security_event(
            db,
            event_type,
            metadata,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            severity=severity,
        )
    except Exception:
        logger.exception("security.event_log_failed event_type=%s user_id=%s", event_type, user_id)
        raise
    finally:
        db.close()


def list_security_events(
    db: Session,
    *,
    event_type: str | None = None,
    user_id: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = 100,
) -> list[SecurityEvent]:
    """Query security events by type, user and time range, newest first."""

    stmt = select(SecurityEvent)
    if event_type is not None:
        stmt = stmt.where(SecurityEvent.event_type == event_type)
    if user_id is not None:
        stmt = stmt.where(SecurityEvent.user_id == user_id)
    if since is not None:
        stmt = stmt.where(SecurityEvent.created_at >= since)
    if until is not None:
        stmt = stmt.where(SecurityEvent.created_at < until)
    stmt = stmt.order_by(SecurityEvent.created_at.desc(), SecurityEvent.id.desc()).limit(max(1, min(limit, 500)))
    return list(db.scalars(stmt).all())
