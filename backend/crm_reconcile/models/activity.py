"""Sales activity ORM model."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from crm_reconcile.models.base import Base, CreatedAtMixin, IdMixin, MergeableMixin


class SalesActivity(Base, IdMixin, CreatedAtMixin, MergeableMixin):
    """Customer-facing event with a denormalized snapshot of its deal."""

    __tablename__ = "activities"

    owner_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    type: Mapped[str] = mapped_column(String(32), index=True, nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="completed", nullable=False)
    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True, nullable=False)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    deal_id: Mapped[int | None] = mapped_column(
        ForeignKey("deals.id", ondelete="SET NULL"),
        index=True,
        nullable=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    merged_into_id: Mapped[int | None] = mapped_column(
        ForeignKey("activities.id", ondelete="SET NULL"),
        index=True,
        nullable=True,
    )
