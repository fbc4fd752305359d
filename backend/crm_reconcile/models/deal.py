"""Deal ORM model."""

from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import Date, DateTime, Float, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from crm_reconcile.models.base import Base, CreatedAtMixin, IdMixin, MergeableMixin


class Deal(Base, IdMixin, CreatedAtMixin, MergeableMixin):
    """Commercial opportunity owned by one user."""

    __tablename__ = "deals"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    company: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    contact_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    value: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    stage: Mapped[str] = mapped_column(String(64), default="lead", nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="in_progress", nullable=False)
    probability: Mapped[float | None] = mapped_column(Float, nullable=True)
    owner_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    expected_close_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    stage_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    merged_into_id: Mapped[int | None] = mapped_column(
        ForeignKey("deals.id", ondelete="SET NULL"),
        index=True,
        nullable=True,
    )
