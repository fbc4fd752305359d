"""Explicit correlation context threaded through reconciliation calls."""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class CorrelationContext:
    """Identifies who is acting and which logical transaction a call belongs to.

    A ``user_id`` of ``None`` means the action is system-automated.
    """

    user_id: str | None = None
    transaction_id: str | None = None


SYSTEM_CONTEXT = CorrelationContext()
