"""add soft-merge tracking to activities and deals

Revision ID: 20261005_0002
Revises: 20261002_0001
Create Date: 2026-10-05 00:00:02
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261005_0002"
down_revision: str | None = "20261002_0001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

_TABLES = ("activities", "deals")


def upgrade() -> None:
    for table in _TABLES:
        # Existing rows keep NULL, which readers treat as active.
        op.add_column(table, sa.Column("record_status", sa.String(length=16), nullable=True))
        op.add_column(table, sa.Column("merged_into_id", sa.Integer(), nullable=True))
        op.add_column(table, sa.Column("merged_at", sa.DateTime(timezone=True), nullable=True))
        op.create_index(f"ix_{table}_record_status", table, ["record_status"], unique=False)
        op.create_index(f"ix_{table}_merged_into_id", table, ["merged_into_id"], unique=False)
        op.create_foreign_key(
            f"fk_{table}_merged_into_id_{table}",
            table,
            table,
            ["merged_into_id"],
            ["id"],
            ondelete="SET NULL",
        )


def downgrade() -> None:
    for table in reversed(_TABLES):
        op.drop_constraint(f"fk_{table}_merged_into_id_{table}", table, type_="foreignkey")
        op.drop_index(f"ix_{table}_merged_into_id", table_name=table)
        op.drop_index(f"ix_{table}_record_status", table_name=table)
        op.drop_column(table, "merged_at")
        op.drop_column(table, "merged_into_id")
        op.drop_column(table, "record_status")
