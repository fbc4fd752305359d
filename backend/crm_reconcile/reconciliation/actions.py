"""Known reconciliation audit action types."""

from enum import Enum


class AuditAction(str, Enum):
    AUTO_LINK_HIGH_CONFIDENCE = "AUTO_LINK_HIGH_CONFIDENCE"
    MANUAL_LINK = "MANUAL_LINK"
    CREATE_DEAL_FROM_ACTIVITY = "CREATE_DEAL_FROM_ACTIVITY"
    CREATE_DEAL_FROM_ACTIVITY_MANUAL = "CREATE_DEAL_FROM_ACTIVITY_MANUAL"
    CREATE_ACTIVITY_FROM_DEAL = "CREATE_ACTIVITY_FROM_DEAL"
    MARK_DUPLICATE_ACTIVITY = "MARK_DUPLICATE_ACTIVITY"
    MERGE_RECORDS_MANUAL = "MERGE_RECORDS_MANUAL"
    RESTORE_MERGED_RECORD = "RESTORE_MERGED_RECORD"
    UNDO_ACTION = "UNDO_ACTION"
    ERROR = "ERROR"


KNOWN_ACTION_TYPES = frozenset(action.value for action in AuditAction)

# Confidence recorded for deterministic, rule-based actions.
DETERMINISTIC_CONFIDENCE = 100.0


def is_known_action(action_type: str) -> bool:
    """Return whether ``action_type`` is one of the enumerated actions."""

    return action_type in KNOWN_ACTION_TYPES
