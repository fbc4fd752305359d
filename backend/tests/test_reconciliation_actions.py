"""Tests for manual reconciliation actions and linkage status counts."""

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
from crm_reconcile.reconciliation.errors import (
    MergeConflictError,
    ReconciliationValidationError,
    RecordNotFoundError,
)
from crm_reconcile.schemas.reconciliation import ActivityFromDealRequest, DealFromActivityRequest
from crm_reconcile.services.reconciliation import (
    create_activity_from_deal,
    create_deal_from_activity,
    get_reconciliation_status,
    link_activity_to_deal,
    mark_duplicate_activity,
)


class ReconciliationActionTests(unittest.TestCase):
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
        deal = Deal(name="Acme Deal", company="Acme", owner_id=owner_id, value=Decimal("900.00"), **overrides)
        self.db.add(deal)
        self.db.flush()
        return deal

    def _sale(self, deal_id: int | None = None, owner_id: str = "user-a", **overrides) -> SalesActivity:
        values = {
            "owner_id": owner_id,
            "type": "sale",
            "client_name": "Acme",
            "amount": Decimal("750.00"),
            "date": datetime(2026, 4, 2, 15, 30),
            "deal_id": deal_id,
        }
        values.update(overrides)
        activity = SalesActivity(**values)
        self.db.add(activity)
        self.db.flush()
        return activity

    def test_status_counts_orphans_links_and_shared_groups(self) -> None:
        shared = self._deal()
        self._sale(shared.id)
        self._sale(shared.id)
        single = self._deal()
        self._sale(single.id)
        self._deal()
        self._sale(None)
        self._sale(None, owner_id="user-b")
        self._sale(None, type="meeting")
        self.db.commit()

        mine = get_reconciliation_status(self.db, owner_id="user-a")
        self.assertEqual(mine.orphan_activities, 1)
        self.assertEqual(mine.linked_activities, 3)
        self.assertEqual(mine.orphan_deals, 1)
        self.assertEqual(mine.shared_deal_groups, 1)

        everyone = get_reconciliation_status(self.db)
        self.assertIsNone(everyone.owner_id)
        self.assertEqual(everyone.orphan_activities, 2)

    def test_manual_link_attaches_activity_and_audits(self) -> None:
        deal = self._deal()
        activity = self._sale(None)
        self.db.commit()

        result = link_activity_to_deal(
            self.db,
            activity_id=activity.id,
            deal_id=deal.id,
            user_id="user-a",
            confidence_score=72.5,
            metadata={"note": "matched by rep"},
            context=CorrelationContext(user_id="user-a", transaction_id="tx-link"),
        )

        self.assertEqual(result.transaction_id, "tx-link")
        self.db.expire_all()
        self.assertEqual(self.db.get(SalesActivity, activity.id).deal_id, deal.id)
        entry = self.db.get(ReconciliationAuditEntry, result.audit_entry_id)
        assert entry is not None
        self.assertEqual(entry.action_type, "MANUAL_LINK")
        self.assertEqual(entry.confidence_score, 72.5)
        self.assertEqual(entry.user_id, "user-a")
        self.assertEqual(entry.metadata_json["note"], "matched by rep")
        self.assertEqual(entry.metadata_json["activity_amount"], "750.00")

    def test_manual_link_requires_ownership_and_unlinked_activity(self) -> None:
        deal = self._deal()
        foreign_deal = self._deal(owner_id="user-b")
        linked = self._sale(deal.id)
        unlinked = self._sale(None)
        merged_deal = self._deal(record_status="merged")
        self.db.commit()

        with self.assertRaises(RecordNotFoundError):
            link_activity_to_deal(self.db, activity_id=unlinked.id, deal_id=foreign_deal.id, user_id="user-a")
        with self.assertRaises(MergeConflictError):
            link_activity_to_deal(self.db, activity_id=linked.id, deal_id=deal.id, user_id="user-a")
        with self.assertRaises(MergeConflictError):
            link_activity_to_deal(self.db, activity_id=unlinked.id, deal_id=merged_deal.id, user_id="user-a")
        self.db.rollback()
        self.assertIsNone(self.db.scalar(select(ReconciliationAuditEntry)))

    def test_create_deal_from_orphan_activity(self) -> None:
        activity = self._sale(None, client_name="Globex", amount=None)
        self.db.commit()

        deal = create_deal_from_activity(self.db, activity_id=activity.id, user_id="user-a")

        self.assertEqual(deal.name, "Globex Deal")
        self.assertEqual(deal.company, "Globex")
        self.assertEqual(deal.status, "won")
        self.assertEqual(deal.value, Decimal("0"))
        self.assertEqual(deal.owner_id, "user-a")
        self.assertEqual(deal.expected_close_date, date(2026, 4, 2))
        self.db.expire_all()
        self.assertEqual(self.db.get(SalesActivity, activity.id).deal_id, deal.id)
        entry = self.db.scalar(select(ReconciliationAuditEntry))
        assert entry is not None
        self.assertEqual(entry.action_type, "CREATE_DEAL_FROM_ACTIVITY_MANUAL")
        self.assertEqual(entry.target_id, deal.id)
        self.assertEqual(entry.confidence_score, 100.0)

    def test_create_deal_applies_overrides(self) -> None:
        activity = self._sale(None)
        self.db.commit()

        deal = create_deal_from_activity(
            self.db,
            activity_id=activity.id,
            user_id="user-a",
            overrides=DealFromActivityRequest(name="Acme Expansion", value=Decimal("1500"), stage="closed"),
        )

        self.assertEqual(deal.name, "Acme Expansion")
        self.assertEqual(deal.value, Decimal("1500"))
        self.assertEqual(deal.stage, "closed")

    def test_create_deal_rejects_linked_or_foreign_activity(self) -> None:
        deal = self._deal()
        linked = self._sale(deal.id)
        foreign = self._sale(None, owner_id="user-b")
        self.db.commit()

        with self.assertRaises(MergeConflictError):
            create_deal_from_activity(self.db, activity_id=linked.id, user_id="user-a")
        with self.assertRaises(RecordNotFoundError):
            create_deal_from_activity(self.db, activity_id=foreign.id, user_id="user-a")


    def test_create_activity_from_deal_without_activities(self) -> None:
        deal = self._deal(expected_close_date=date(2026, 5, 1))
        self.db.commit()

        activity = create_activity_from_deal(self.db, deal_id=deal.id, user_id="user-a")

        self.assertEqual(activity.deal_id, deal.id)
        self.assertEqual(activity.type, "sale")
        self.assertEqual(activity.status, "completed")
        self.assertEqual(activity.client_name, "Acme")
        self.assertEqual(activity.amount, Decimal("900.00"))
        self.assertEqual(activity.date.date(), date(2026, 5, 1))
        self.assertEqual(activity.details, f"Created from deal #{deal.id}.")
        entry = self.db.scalar(select(ReconciliationAuditEntry))
        assert entry is not None
        self.assertEqual(entry.action_type, "CREATE_ACTIVITY_FROM_DEAL")
        self.assertEqual((entry.source_table, entry.source_id), ("deals", deal.id))
        self.assertEqual((entry.target_table, entry.target_id), ("activities", activity.id))
        self.assertEqual(entry.metadata_json["close_date"], "2026-05-01")
        self.assertEqual(entry.user_id, "user-a")

    def test_create_activity_from_deal_applies_overrides(self) -> None:
        deal = self._deal()
        self.db.commit()

        activity = create_activity_from_deal(
            self.db,
            deal_id=deal.id,
            user_id="user-a",
            overrides=ActivityFromDealRequest(
                client_name="Acme Holdings",
                amount=Decimal("880.00"),
                activity_date=datetime(2026, 6, 3, 10, 0),
                details="Invoice 42",
                metadata={"source": "import"},
            ),
        )

        self.assertEqual(activity.client_name, "Acme Holdings")
        self.assertEqual(activity.amount, Decimal("880.00"))
        self.assertEqual(activity.date.date(), date(2026, 6, 3))
        self.assertEqual(activity.details, "Invoice 42")
        entry = self.db.scalar(select(ReconciliationAuditEntry))
        assert entry is not None
        self.assertEqual(entry.metadata_json["source"], "import")

    def test_create_activity_rejects_claimed_merged_or_foreign_deal(self) -> None:
        claimed = self._deal()
        self._sale(claimed.id)
        merged = self._deal(record_status="merged")
        foreign = self._deal(owner_id="user-b")
        self.db.commit()

        with self.assertRaises(MergeConflictError):
            create_activity_from_deal(self.db, deal_id=claimed.id, user_id="user-a")
        with self.assertRaises(MergeConflictError):
            create_activity_from_deal(self.db, deal_id=merged.id, user_id="user-a")
        with self.assertRaises(RecordNotFoundError):
            create_activity_from_deal(self.db, deal_id=foreign.id, user_id="user-a")
        self.db.rollback()
        self.assertIsNone(self.db.scalar(select(ReconciliationAuditEntry)))

    def test_mark_duplicate_merges_into_kept_activity(self) -> None:
        kept = self._sale(None)
        duplicate = self._sale(None)
        self.db.commit()
        kept_id, duplicate_id = kept.id, duplicate.id

        result = mark_duplicate_activity(
            self.db,
            activity_id=duplicate_id,
            keep_id=kept_id,
            user_id="user-a",
            metadata={"reason": "double entry"},
        )

        self.assertEqual(result.kept_record_id, kept_id)
        self.assertEqual(result.merged_record_ids, [duplicate_id])
        self.db.expire_all()
        merged = self.db.get(SalesActivity, duplicate_id)
        self.assertEqual(merged.record_status, "merged")
        self.assertEqual(merged.merged_into_id, kept_id)
        entry = self.db.get(ReconciliationAuditEntry, result.audit_entry_ids[0])
        assert entry is not None
        self.assertEqual(entry.action_type, "MARK_DUPLICATE_ACTIVITY")
        self.assertEqual((entry.source_id, entry.target_id), (duplicate_id, kept_id))
        self.assertEqual(entry.metadata_json["duplicate_of"], kept_id)
        self.assertEqual(entry.metadata_json["reason"], "double entry")

    def test_mark_duplicate_rejects_self_and_foreign_activities(self) -> None:
        kept = self._sale(None)
        foreign = self._sale(None, owner_id="user-b")
        self.db.commit()

        with self.assertRaises(ReconciliationValidationError):
            mark_duplicate_activity(self.db, activity_id=kept.id, keep_id=kept.id, user_id="user-a")
        with self.assertRaises(RecordNotFoundError):
            mark_duplicate_activity(self.db, activity_id=foreign.id, keep_id=kept.id, user_id="user-a")


if __name__ == "__main__":
    unittest.main()
