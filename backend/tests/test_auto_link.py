"""Tests for the high-confidence automatic linking pass."""

from __future__ import annotations

import unittest
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import create_engine, delete, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crm_reconcile.models.activity import SalesActivity
from crm_reconcile.models.base import Base
from crm_reconcile.models.deal import Deal
from crm_reconcile.models.reconciliation_audit_entry import ReconciliationAuditEntry
from crm_reconcile.reconciliation.context import CorrelationContext
from crm_reconcile.reconciliation.errors import ReconciliationValidationError
from crm_reconcile.services.auto_link import (
    MatchScore,
    amount_confidence,
    date_confidence,
    name_confidence,
    run_auto_link,
)


class AutoLinkScoringTests(unittest.TestCase):
    def test_name_confidence_ignores_case_and_punctuation(self) -> None:
        self.assertEqual(name_confidence("ACME corp.", "Acme Corp"), 100.0)
        self.assertEqual(name_confidence("Acme Corporation", "Acme Corporatoin"), 90.0)
        self.assertLess(name_confidence("Globex", "Acme Corp"), 50.0)
        self.assertEqual(name_confidence("", "Acme Corp"), 0.0)

    def test_date_confidence_steps_by_day_distance(self) -> None:
        close = date(2024, 3, 10)
        self.assertEqual(date_confidence(datetime(2024, 3, 10, 17, 45), close), 100.0)
        self.assertEqual(date_confidence(datetime(2024, 3, 11, 9, 0), close), 90.0)
        self.assertEqual(date_confidence(datetime(2024, 3, 7, 9, 0), close), 70.0)
        self.assertEqual(date_confidence(datetime(2024, 3, 20, 9, 0), close), 0.0)
        self.assertEqual(date_confidence(datetime(2024, 3, 10), None), 0.0)

    def test_amount_confidence_steps_by_relative_difference(self) -> None:
        self.assertEqual(amount_confidence(None, Decimal("1000")), 50.0)
        self.assertEqual(amount_confidence(Decimal("1000.00"), Decimal("1000")), 100.0)
        self.assertEqual(amount_confidence(Decimal("950"), Decimal("1000")), 90.0)
        self.assertEqual(amount_confidence(Decimal("750"), Decimal("1000")), 70.0)
        self.assertEqual(amount_confidence(Decimal("100"), Decimal("1000")), 30.0)
        self.assertEqual(amount_confidence(Decimal("0"), Decimal("0")), 100.0)

    def test_overall_score_is_weighted(self) -> None:
        self.assertEqual(MatchScore(name=100.0, date=90.0, amount=90.0).overall, 95.0)
        self.assertEqual(MatchScore(name=100.0, date=0.0, amount=100.0).overall, 70.0)


class AutoLinkRunTests(unittest.TestCase):
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
        self.db.execute(delete(ReconciliationAuditEntry))
        self.db.execute(delete(SalesActivity))
        self.db.execute(delete(Deal))
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def _deal(self, owner_id: str = "user-a", **overrides) -> Deal:
        values = {
            "name": "Acme Platform",
            "company": "Acme Corp",
            "value": Decimal("1000.00"),
            "owner_id": owner_id,
            "expected_close_date": date(2024, 3, 10),
        }
        values.update(overrides)
        deal = Deal(**values)
        self.db.add(deal)
        self.db.flush()
        return deal

    def _sale(self, owner_id: str = "user-a", **overrides) -> SalesActivity:
        values = {
            "owner_id": owner_id,
            "type": "sale",
            "status": "completed",
            "client_name": "Acme Corp",
            "amount": Decimal("1000.00"),
            "date": datetime(2024, 3, 10, 14, 0),
            "deal_id": None,
        }
        values.update(overrides)
        activity = SalesActivity(**values)
        self.db.add(activity)
        self.db.flush()
        return activity

    def _entries(self, action_type: str) -> list[ReconciliationAuditEntry]:
        return list(
            self.db.scalars(
                select(ReconciliationAuditEntry)
                .where(ReconciliationAuditEntry.action_type == action_type)
                .order_by(ReconciliationAuditEntry.id)
            ).all()
        )

    def test_high_confidence_match_is_linked_and_audited(self) -> None:
        deal = self._deal()
        activity = self._sale()
        self.db.commit()
        deal_id, activity_id = deal.id, activity.id

        report = run_auto_link(self.db)

        self.assertEqual(report.mode, "safe")
        self.assertEqual((report.orphan_activities, report.linked, report.unmatched), (1, 1, 0))
        self.assertEqual((report.links[0].activity_id, report.links[0].deal_id), (activity_id, deal_id))
        self.db.expire_all()
        self.assertEqual(self.db.get(SalesActivity, activity_id).deal_id, deal_id)

        entries = self._entries("AUTO_LINK_HIGH_CONFIDENCE")
        self.assertEqual(len(entries), 1)
        entry = entries[0]
        self.assertEqual(entry.id, report.links[0].audit_entry_id)
        self.assertEqual((entry.source_id, entry.target_id), (activity_id, deal_id))
        self.assertEqual(entry.confidence_score, 100.0)
        self.assertEqual(entry.metadata_json["name_confidence"], 100.0)
        self.assertEqual(entry.metadata_json["mode"], "safe")
        self.assertIsNone(entry.user_id)

    def test_match_below_threshold_is_left_alone(self) -> None:
        self._deal()
        activity = self._sale(date=datetime(2024, 4, 20))
        self.db.commit()
        activity_id = activity.id

        report = run_auto_link(self.db)

        self.assertEqual((report.linked, report.unmatched), (0, 1))
        self.assertIsNone(self.db.get(SalesActivity, activity_id).deal_id)
        self.assertEqual(self._entries("AUTO_LINK_HIGH_CONFIDENCE"), [])

        lenient = run_auto_link(self.db, min_confidence=70.0)
        self.assertEqual(lenient.linked, 1)

    def test_dry_run_reports_links_without_writing(self) -> None:
        deal = self._deal()
        activity = self._sale()
        self.db.commit()
        deal_id, activity_id = deal.id, activity.id

        report = run_auto_link(self.db, mode="dry_run")

        self.assertEqual(report.mode, "dry_run")
        self.assertEqual(report.linked, 0)
        self.assertEqual(len(report.links), 1)
        self.assertEqual(report.links[0].deal_id, deal_id)
        self.assertIsNone(report.links[0].audit_entry_id)
        self.assertIsNone(self.db.get(SalesActivity, activity_id).deal_id)
        self.assertEqual(self.db.scalars(select(ReconciliationAuditEntry)).all(), [])

    def test_each_deal_receives_at_most_one_activity(self) -> None:
        deal = self._deal()
        exact = self._sale()
        close = self._sale(amount=Decimal("960.00"), date=datetime(2024, 3, 11, 9, 0))
        self.db.commit()
        deal_id, exact_id, close_id = deal.id, exact.id, close.id

        report = run_auto_link(self.db)

        self.assertEqual((report.linked, report.unmatched), (1, 1))
        self.db.expire_all()
        self.assertEqual(self.db.get(SalesActivity, exact_id).deal_id, deal_id)
        self.assertIsNone(self.db.get(SalesActivity, close_id).deal_id)

    def test_only_unclaimed_active_deals_of_the_same_owner_are_considered(self) -> None:
        self._deal(owner_id="user-b")
        claimed = self._deal()
        self._sale(type="meeting", deal_id=claimed.id)
        self._deal(record_status="merged")
        activity = self._sale()
        self.db.commit()
        activity_id = activity.id

        report = run_auto_link(self.db)

        self.assertEqual((report.linked, report.unmatched), (0, 1))
        self.assertIsNone(self.db.get(SalesActivity, activity_id).deal_id)

    def test_owner_scope_and_batch_size_limit_the_pass(self) -> None:
        for day in (10, 11, 12):
            self._deal(expected_close_date=date(2024, 3, day), name=f"Acme {day}")
            self._sale(date=datetime(2024, 3, day, 12, 0))
        self._deal(owner_id="user-b")
        theirs = self._sale(owner_id="user-b")
        self.db.commit()
        theirs_id = theirs.id

        report = run_auto_link(
            self.db,
            owner_id="user-a",
            batch_size=2,
            context=CorrelationContext(user_id="admin-1"),
        )

        self.assertEqual((report.orphan_activities, report.linked, report.deferred), (3, 2, 1))
        self.assertIsNone(self.db.get(SalesActivity, theirs_id).deal_id)
        self.assertTrue(all(entry.user_id == "admin-1" for entry in self._entries("AUTO_LINK_HIGH_CONFIDENCE")))

        rest = run_auto_link(self.db, owner_id="user-a")
        self.assertEqual((rest.orphan_activities, rest.linked, rest.deferred), (1, 1, 0))

    def test_rerun_is_a_no_op(self) -> None:
        self._deal()
        self._sale()
        self.db.commit()
        run_auto_link(self.db)

        report = run_auto_link(self.db)

        self.assertEqual((report.orphan_activities, report.linked), (0, 0))
        self.assertEqual(len(self._entries("AUTO_LINK_HIGH_CONFIDENCE")), 1)

    def test_invalid_mode_or_batch_size_is_rejected(self) -> None:
        with self.assertRaises(ReconciliationValidationError):
            run_auto_link(self.db, mode="aggressive")
        with self.assertRaises(ReconciliationValidationError):
            run_auto_link(self.db, batch_size=0)
        with self.assertRaises(ReconciliationValidationError):
            run_auto_link(self.db, min_confidence=120.0)


if __name__ == "__main__":
    unittest.main()
