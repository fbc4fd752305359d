"""Declarative base and shared column mixins."""

from datetime import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class IdMixin:
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)


class CreatedAtMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class MergeableMixin:
    """Soft-deletion markers shared by activities and deals.

    ``record_status`` is NULL for rows written before merge tracking existed;
    those rows count as active.
    """

    record_status: Mapped[str | None] = mapped_column(String(16), default="active", index=True, nullable=True)
    merged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
