"""Tests for logical transaction correlation markers."""

from __future__ import annotations

import unittest
from decimal import Decimal

from sqlalchemy import create_engine, delete, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crm_reconcile.models.base import Base
from crm_reconcile.models.deal import Deal
from crm_reconcile.models.logical_transaction import LogicalTransaction
from crm_reconcile.models.reconciliation_audit_entry import ReconciliationAuditEntry
from crm_reconcile.reconciliation.errors import MergeConflictError
from crm_reconcile.services.records import merge_records
from crm_reconcile.services.transactions import (
    begin_logical_transaction,
    commit_logical_transaction,
    get_logical_transaction,
    logical_transaction,
    rollback_logical_transaction,
)


class LogicalTransactionTests(unittest.TestCase):
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
        self.db.execute(delete(LogicalTransaction))
        self.db.execute(delete(Deal))
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def test_begin_returns_fresh_opaque_ids(self) -> None:
        first = begin_logical_transaction(self.db, user_id="user-a")
        second = begin_logical_transaction(self.db, user_id="user-a")

        self.assertNotEqual(first, second)
        marker = get_logical_transaction(self.db, first)
        assert marker is not None
        self.assertEqual(marker.state, "active")
        self.assertEqual(marker.started_by, "user-a")
        self.assertIsNone(marker.finished_at)

    def test_commit_and_rollback_record_terminal_state_once(self) -> None:
        committed_id = begin_logical_transaction(self.db)
        rolled_back_id = begin_logical_transaction(self.db)

        committed = commit_logical_transaction(self.db, committed_id)
        rolled_back = rollback_logical_transaction(self.db, rolled_back_id)

        assert committed is not None and rolled_back is not None
        self.assertEqual(committed.state, "committed")
        self.assertIsNotNone(committed.finished_at)
        self.assertEqual(rolled_back.state, "rolled_back")
        self.assertIsNone(commit_logical_transaction(self.db, committed_id))
        self.assertIsNone(rollback_logical_transaction(self.db, committed_id))
        self.assertEqual(get_logical_transaction(self.db, committed_id).state, "committed")

    def test_finishing_without_begin_is_a_no_op(self) -> None:
        self.assertIsNone(commit_logical_transaction(self.db, "never-started"))
        self.assertIsNone(rollback_logical_transaction(self.db, None))
        self.assertEqual(list(self.db.scalars(select(LogicalTransaction)).all()), [])

    def test_context_manager_stamps_audit_entries_and_commits_marker(self) -> None:
        keep = Deal(name="Keep", company="Acme", owner_id="user-a", value=Decimal("1"))
        dup = Deal(name="Dup", company="Acme", owner_id="user-a", value=Decimal("1"))
        self.db.add_all([keep, dup])
        self.db.commit()

        with logical_transaction(self.db, user_id="user-a") as context:
            merge_records(self.db, "deals", [keep.id, dup.id], user_id="user-a", context=context)

        entry = self.db.scalar(select(ReconciliationAuditEntry))
        assert entry is not None
        self.assertEqual(entry.transaction_id, context.transaction_id)
        self.assertEqual(entry.metadata_json["transaction_id"], context.transaction_id)
        self.assertEqual(get_logical_transaction(self.db, context.transaction_id).state, "committed")

    def test_context_manager_rolls_back_marker_and_reraises(self) -> None:
        survivor = Deal(name="Survivor", company="Acme", owner_id="user-a", value=Decimal("1"))
        self.db.add(survivor)
        self.db.flush()
        merged = Deal(
            name="Merged",
            company="Acme",
            owner_id="user-a",
            value=Decimal("1"),
            record_status="merged",
            merged_into_id=survivor.id,
        )
        self.db.add(merged)
        self.db.commit()

        with self.assertRaises(MergeConflictError):
            with logical_transaction(self.db, user_id="user-a") as context:
                merge_records(self.db, "deals", [merged.id, survivor.id], user_id="user-a", context=context)

        self.assertEqual(get_logical_transaction(self.db, context.transaction_id).state, "rolled_back")
        self.assertIsNone(self.db.scalar(select(ReconciliationAuditEntry)))


if __name__ == "__main__":
    unittest.main()
