"""Tests for the security event sink."""

from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import create_engine, delete, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crm_reconcile.models.append_only import AppendOnlyViolation
from crm_reconcile.models.base import Base
from crm_reconcile.models.reconciliation_audit_entry import ReconciliationAuditEntry
from crm_reconcile.models.security_event import SecurityEvent
from crm_reconcile.reconciliation.errors import ReconciliationValidationError
from crm_reconcile.services.security_events import (
    list_security_events,
    log_security_event,
    record_security_event_job,
)


class SecurityEventTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.SessionLocal = sessionmaker(bind=cls.engine, autoflush=False, autocommit=False, future=True)
        Base.metadata.create_all(cls.engine)

    @classmethod
    def tearDownClass(cls) -> None:
        Base.metadata.drop_all(cls.engine)
        cls.engine.dispose()

    def setUp(self) -> None:
        self.db: Session = self.SessionLocal()
        self.db.execute(delete(SecurityEvent))
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def test_log_persists_event_in_its_own_table(self) -> None:
        log_security_event(
            self.db,
            "restore_denied",
            {"table": "deals", "record_id": 4},
            user_id="user-a",
            ip_address="10.0.0.7",
            user_agent="curl/8.0",
            severity="medium",
        )

        event = self.db.scalar(select(SecurityEvent))
        assert event is not None
        self.assertEqual(event.event_type, "restore_denied")
        self.assertEqual(event.severity, "MEDIUM")
        self.assertEqual(event.user_id, "user-a")
        self.assertEqual(event.ip_address, "10.0.0.7")
        self.assertEqual(event.user_agent, "curl/8.0")
        self.assertEqual(event.metadata_json, {"table": "deals", "record_id": 4})
        self.assertEqual(self.db.scalar(select(func.count(ReconciliationAuditEntry.id))), 0)

    def test_invalid_type_or_severity_is_rejected(self) -> None:
        with self.assertRaises(ReconciliationValidationError):
            log_security_event(self.db, "  ")
        with self.assertRaises(ReconciliationValidationError):
            log_security_event(self.db, "rate_limited", severity="SEVERE")
        self.assertEqual(self.db.scalar(select(func.count(SecurityEvent.id))), 0)

    def test_metadata_is_stored_as_json_safe_values(self) -> None:
        log_security_event(
            self.db,
            "rate_limited",
            {"window_start": datetime(2024, 1, 1), "limit": Decimal("2.50"), 7: ("a", "b")},
            user_id="user-a",
        )

        self.db.expire_all()
        event = self.db.scalar(select(SecurityEvent))
        assert event is not None
        self.assertEqual(
            event.metadata_json,
            {"window_start": "2024-01-01T00:00:00", "limit": "2.50", "7": ["a", "b"]},
        )

    def test_events_are_append_only(self) -> None:
        log_security_event(self.db, "login_failed", user_id="user-a")
        event = self.db.scalar(select(SecurityEvent))
        assert event is not None

        event.severity = "CRITICAL"
        with self.assertRaises(AppendOnlyViolation):
            self.db.flush()
        self.db.rollback()

    def test_query_filters_by_type_user_and_time_range(self) -> None:
        log_security_event(self.db, "login_failed", user_id="user-a")
        log_security_event(self.db, "login_failed", user_id="user-b")
        log_security_event(self.db, "rate_limited", user_id="user-a", severity="HIGH")

        self.assertEqual(len(list_security_events(self.db, event_type="login_failed")), 2)
        self.assertEqual(len(list_security_events(self.db, user_id="user-a")), 2)
        self.assertEqual(
            [event.event_type for event in list_security_events(self.db, event_type="rate_limited", user_id="user-a")],
            ["rate_limited"],
        )
        tomorrow = datetime.now(timezone.utc) + timedelta(days=1)
        self.assertEqual(list_security_events(self.db, since=tomorrow), [])
        self.assertEqual(len(list_security_events(self.db, until=tomorrow)), 3)

    def test_background_job_writes_through_its_own_session(self) -> None:
        with patch("crm_reconcile.services.security_events.SessionLocal", self.SessionLocal):
            record_security_event_job("permission_denied", {"path": "/audit-entries/summary"}, user_id="user-c")

        events = list_security_events(self.db, user_id="user-c")
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].metadata_json["path"], "/audit-entries/summary")

    def test_background_job_logs_and_reraises_failures(self) -> None:
        with patch("crm_reconcile.services.security_events.SessionLocal", self.SessionLocal):
            with self.assertLogs("crm_reconcile.services.security_events", level="ERROR"):
                with self.assertRaises(ReconciliationValidationError):
                    record_security_event_job("", user_id="user-c")


if __name__ == "__main__":
    unittest.main()
