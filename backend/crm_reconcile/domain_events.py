"""Synchronous domain events published by write paths.

Handlers run inside the publisher's session before it commits, so their
writes share its transaction.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session


@dataclass(frozen=True, slots=True)
class DealStageChanged:
    deal_id: int
    from_stage: str | None
    to_stage: str
    changed_by: str | None
    changed_at: datetime


EventHandler = Callable[[Session, object], None]

_HANDLERS: dict[type, list[EventHandler]] = defaultdict(list)


def subscribe(event_type: type, handler: EventHandler) -> None:
    """Register ``handler`` for ``event_type`` once."""

    if handler not in _HANDLERS[event_type]:
        _HANDLERS[event_type].append(handler)


def publish(db: Session, event: object) -> None:
    for handler in list(_HANDLERS.get(type(event), ())):
        handler(db, event)
