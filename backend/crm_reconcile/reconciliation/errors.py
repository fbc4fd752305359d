"""Reconciliation error taxonomy."""


class ReconciliationError(Exception):
    """Base class for reconciliation failures surfaced to callers."""


class ReconciliationValidationError(ReconciliationError, ValueError):
    """Raised before any mutation when caller input is invalid."""


class InvalidRecordTableError(ReconciliationValidationError):
    """Raised when a table name falls outside the activities/deals allow-list."""

    def __init__(self, table_name: str) -> None:
        super().__init__(f"Unsupported record table: {table_name!r}")
        self.table_name = table_name


class ConfidenceOutOfRangeError(ReconciliationValidationError):
    """Raised when a confidence score is outside [0, 100]."""

    def __init__(self, confidence_score: float) -> None:
        super().__init__(f"Confidence score must lie in [0, 100], got {confidence_score}")
        self.confidence_score = confidence_score


class RecordNotFoundError(ReconciliationError):
    """Raised when a referenced record is missing or not owned by the caller."""


class MergeConflictError(ReconciliationError):
    """Raised when link or merge preconditions do not hold."""


class SourceDealUnavailableError(ReconciliationError):
    """Raised when a deal cannot be cloned because it is gone or merged."""
