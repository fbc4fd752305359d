"""reconciliation audit log and logical transaction markers

Revision ID: 20261008_0003
Revises: 20261005_0002
Create Date: 2026-10-08 00:00:03
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261008_0003"
down_revision: str | None = "20261005_0002"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "reconciliation_audit_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("action_type", sa.String(length=64), nullable=False),
        sa.Column("source_table", sa.String(length=64), nullable=False),
        sa.Column("source_id", sa.Integer(), nullable=False),
        sa.Column("target_table", sa.String(length=64), nullable=True),
        sa.Column("target_id", sa.Integer(), nullable=True),
        sa.Column("confidence_score", sa.Float(), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=True),
        sa.Column("transaction_id", sa.String(length=64), nullable=True),
        sa.Column("executed_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint(
            "confidence_score IS NULL OR (confidence_score >= 0 AND confidence_score <= 100)",
            name="ck_reconciliation_audit_log_confidence_range",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_reconciliation_audit_log_action_type", "reconciliation_audit_log", ["action_type"], unique=False
    )
    op.create_index("ix_reconciliation_audit_log_user_id", "reconciliation_audit_log", ["user_id"], unique=False)
    op.create_index(
        "ix_reconciliation_audit_log_transaction_id", "reconciliation_audit_log", ["transaction_id"], unique=False
    )
    op.create_index(
        "ix_reconciliation_audit_log_executed_at", "reconciliation_audit_log", ["executed_at"], unique=False
    )

    op.create_table(
        "logical_transactions",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("state", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("started_by", sa.String(length=255), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_logical_transactions_state", "logical_transactions", ["state"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_logical_transactions_state", table_name="logical_transactions")
    op.drop_table("logical_transactions")

    op.drop_index("ix_reconciliation_audit_log_executed_at", table_name="reconciliation_audit_log")
    op.drop_index("ix_reconciliation_audit_log_transaction_id", table_name="reconciliation_audit_log")
    op.drop_index("ix_reconciliation_audit_log_user_id", table_name="reconciliation_audit_log")
    op.drop_index("ix_reconciliation_audit_log_action_type", table_name="reconciliation_audit_log")
    op.drop_table("reconciliation_audit_log")
