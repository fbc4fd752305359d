"""Run reconciliation maintenance jobs outside the HTTP service.

Usage (from repository root):
    python backend/scripts/reconcile.py split-shared-deals --dry-run
    python backend/scripts/reconcile.py purge-audit-log --days 90
    python backend/scripts/reconcile.py auto-link --mode dry_run --owner-id user-123
    python backend/scripts/reconcile.py rollback --since 2026-10-01T00:00:00+00:00

Usage (from backend directory):
    python scripts/reconcile.py split-shared-deals --batch-size 200
    # or
    python -m scripts.reconcile purge-audit-log
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

# Make `crm_reconcile` imports work whether the script is run from repo root or backend/.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from crm_reconcile.db.session import SessionLocal
from crm_reconcile.reconciliation.context import CorrelationContext
from crm_reconcile.reconciliation.errors import ReconciliationError
from crm_reconcile.services.audit_log import purge_expired_audit_entries
from crm_reconcile.services.auto_link import AUTO_LINK_MODES, run_auto_link
from crm_reconcile.services.duplicate_resolution import MAX_BATCH_SIZE, run_duplicate_resolution
from crm_reconcile.services.undo import rollback_reconciliation

logger = logging.getLogger("scripts.reconcile")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse script CLI arguments."""

    parser = argparse.ArgumentParser(description="Reconciliation maintenance jobs.")
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    split = subparsers.add_parser("split-shared-deals", help="Split completed sales that share one deal.")
    split.add_argument("--dry-run", action="store_true", help="Report planned splits without writing anything.")
    split.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help=f"Maximum splits attempted in this run (1..{MAX_BATCH_SIZE}; default from settings).",
    )
    split.add_argument("--user-id", default=None, help="User id recorded on audit entries (default: system).")
    split.add_argument("--owner-id", default=None, help="Only repair records owned by this user.")

    link = subparsers.add_parser("auto-link", help="Link orphan sales to near-certain deal matches.")
    link.add_argument("--mode", choices=AUTO_LINK_MODES, default="safe", help="dry_run reports without writing.")
    link.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help=f"Maximum orphan activities considered (1..{MAX_BATCH_SIZE}; default from settings).",
    )
    link.add_argument("--owner-id", default=None, help="Only link records owned by this user.")
    link.add_argument("--user-id", default=None, help="User id recorded on audit entries (default: system).")

    rollback = subparsers.add_parser("rollback", help="Revert audited reconciliation actions.")
    rollback.add_argument(
        "--audit-entry-id",
        dest="audit_entry_ids",
        type=int,
        action="append",
        default=None,
        help="Audit entry to revert; repeatable.",
    )
    rollback.add_argument(
        "--since",
        type=datetime.fromisoformat,
        default=None,
        help="Revert entries executed at or after this ISO timestamp.",
    )
    rollback.add_argument("--user-id", default="system", help="User id recorded on undo entries.")

    purge = subparsers.add_parser("purge-audit-log", help="Delete audit entries past the retention window.")
    purge.add_argument("--days", type=int, default=None, help="Retention window in days (default from settings).")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Run the selected job and print its result."""

    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    try:
        with SessionLocal() as db:
            if args.command == "split-shared-deals":
                report = run_duplicate_resolution(
                    db,
                    dry_run=args.dry_run,
                    batch_size=args.batch_size,
                    owner_id=args.owner_id,
                    context=CorrelationContext(user_id=args.user_id),
                )
                print(report.model_dump_json(indent=2))
                return 1 if report.failed else 0

            if args.command == "auto-link":
                link_report = run_auto_link(
                    db,
                    mode=args.mode,
                    batch_size=args.batch_size,
                    owner_id=args.owner_id,
                    context=CorrelationContext(user_id=args.user_id),
                )
                print(link_report.model_dump_json(indent=2))
                return 1 if link_report.failed else 0

            if args.command == "rollback":
                rollback_report = rollback_reconciliation(
                    db,
                    user_id=args.user_id,
                    is_admin=True,
                    audit_entry_ids=args.audit_entry_ids,
                    since=args.since,
                )
                print(rollback_report.model_dump_json(indent=2))
                return 1 if rollback_report.failed else 0

            purged = purge_expired_audit_entries(db, retention_days=args.days)
            print(f"purged_entries={purged}")
            return 0
    except ReconciliationError as exc:
        logger.error("reconcile.invalid_arguments command=%s error=%s", args.command, exc)
        return 2
    except Exception:
        logger.exception("reconcile.job_failed command=%s", args.command)
        raise


if __name__ == "__main__":
    sys.exit(main())
