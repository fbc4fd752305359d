"""Translate reconciliation errors into HTTP responses."""

from fastapi import HTTPException

from crm_reconcile.reconciliation.errors import (
    MergeConflictError,
    ReconciliationError,
    ReconciliationValidationError,
    RecordNotFoundError,
)


def to_http_exception(exc: ReconciliationError) -> HTTPException:
    if isinstance(exc, ReconciliationValidationError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, RecordNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, MergeConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))
