"""Closed set of record tables that support merge and restore."""

from __future__ import annotations

from enum import Enum

from crm_reconcile.models.activity import SalesActivity
from crm_reconcile.models.deal import Deal
from crm_reconcile.reconciliation.errors import InvalidRecordTableError

RECORD_STATUS_ACTIVE = "active"
RECORD_STATUS_MERGED = "merged"


class RecordTable(str, Enum):
    ACTIVITIES = "activities"
    DEALS = "deals"

    @property
    def model(self) -> type[SalesActivity] | type[Deal]:
        return _MODEL_BY_TABLE[self]


_MODEL_BY_TABLE: dict[RecordTable, type[SalesActivity] | type[Deal]] = {
    RecordTable.ACTIVITIES: SalesActivity,
    RecordTable.DEALS: Deal,
}


def parse_record_table(value: str | RecordTable) -> RecordTable:
    """Map caller input onto the allow-list, raising for anything else."""

    if isinstance(value, RecordTable):
        return value
    try:
        return RecordTable(str(value).strip().lower())
    except ValueError as exc:
        raise InvalidRecordTableError(str(value)) from exc
