"""Security event log model."""

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from crm_reconcile.models.base import Base, CreatedAtMixin, IdMixin


class SecurityEvent(Base, IdMixin, CreatedAtMixin):
    """Authorization, rate-limit and anomaly events, kept apart from the audit log."""

    __tablename__ = "security_events"

    event_type: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    severity: Mapped[str] = mapped_column(String(16), default="LOW", nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(255), index=True, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[dict[str, object]] = mapped_column(JSON, default=dict, nullable=False)
