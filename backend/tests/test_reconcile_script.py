"""Tests for the maintenance job command line."""

from __future__ import annotations

import io
import json
import unittest
from contextlib import redirect_stdout
from datetime import date, datetime
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import create_engine, delete, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crm_reconcile.models.activity import SalesActivity
from crm_reconcile.models.base import Base
from crm_reconcile.models.deal import Deal
from crm_reconcile.models.reconciliation_audit_entry import ReconciliationAuditEntry
from scripts import reconcile


class ReconcileScriptTests(unittest.TestCase):
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

        session_patch = patch.object(reconcile, "SessionLocal", self.SessionLocal)
        session_patch.start()
        self.addCleanup(session_patch.stop)

    def tearDown(self) -> None:
        self.db.close()

    def _run(self, *argv: str) -> tuple[int, str]:
        out = io.StringIO()
        with redirect_stdout(out):
            code = reconcile.main(list(argv))
        return code, out.getvalue()

    def _shared_deal(self, owner_id: str) -> int:
        deal = Deal(
            name="Acme Renewal",
            company="Acme Corp",
            owner_id=owner_id,
            value=Decimal("1000.00"),
            expected_close_date=date(2024, 3, 10),
        )
        self.db.add(deal)
        self.db.flush()
        for when in (datetime(2024, 1, 5), datetime(2024, 2, 5)):
            self.db.add(
                SalesActivity(
                    owner_id=owner_id,
                    type="sale",
                    status="completed",
                    client_name="Acme Corp",
                    amount=Decimal("600.00"),
                    date=when,
                    deal_id=deal.id,
                )
            )
        self.db.commit()
        return deal.id

    def test_split_command_honours_owner_scope(self) -> None:
        self._shared_deal("owner-1")
        theirs = self._shared_deal("owner-2")

        code, output = self._run("split-shared-deals", "--owner-id", "owner-1")

        self.assertEqual(code, 0)
        report = json.loads(output)
        self.assertEqual((report["candidates"], report["repaired"]), (2, 1))
        still_shared = self.db.scalars(select(SalesActivity.id).where(SalesActivity.deal_id == theirs)).all()
        self.assertEqual(len(still_shared), 2)

    def test_auto_link_and_rollback_commands(self) -> None:
        self.db.add(
            Deal(
                name="Acme Platform",
                company="Acme Corp",
                owner_id="owner-1",
                value=Decimal("1000.00"),
                expected_close_date=date(2024, 3, 10),
            )
        )
        orphan = SalesActivity(
            owner_id="owner-1",
            type="sale",
            status="completed",
            client_name="Acme Corp",
            amount=Decimal("1000.00"),
            date=datetime(2024, 3, 10, 12, 0),
        )
        self.db.add(orphan)
        self.db.commit()
        orphan_id = orphan.id

        code, output = self._run("auto-link", "--mode", "dry_run")
        self.assertEqual(code, 0)
        self.assertEqual(len(json.loads(output)["links"]), 1)

        code, output = self._run("auto-link", "--owner-id", "owner-1", "--user-id", "ops-1")
        self.assertEqual(code, 0)
        entry_id = json.loads(output)["links"][0]["audit_entry_id"]
        self.db.expire_all()
        self.assertIsNotNone(self.db.get(SalesActivity, orphan_id).deal_id)

        code, output = self._run("rollback", "--audit-entry-id", str(entry_id))
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(output)["reverted"], 1)
        self.db.expire_all()
        self.assertIsNone(self.db.get(SalesActivity, orphan_id).deal_id)

    def test_invalid_arguments_exit_with_code_two(self) -> None:
        code, _ = self._run("auto-link", "--batch-size", "0")
        self.assertEqual(code, 2)
        code, _ = self._run("rollback")
        self.assertEqual(code, 2)


if __name__ == "__main__":
    unittest.main()
