"""Security event routes."""

from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.orm import Session

from crm_reconcile.auth import CurrentUser, get_current_user, require_admin
from crm_reconcile.db.dependencies import get_db
from crm_reconcile.schemas.common import ApiResponse
from crm_reconcile.schemas.security_event import SecurityEventAccepted, SecurityEventCreate, SecurityEventRead
from crm_reconcile.services.security_events import list_security_events, record_security_event_job

router = APIRouter(prefix="/security-events")


@router.post("", response_model=ApiResponse[SecurityEventAccepted], status_code=202)
def report_security_event(
    payload: SecurityEventCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    user: CurrentUser = Depends(get_current_user),
) -> ApiResponse[SecurityEventAccepted]:
    """Accept a security event; it is written after the response is sent."""

    background_tasks.add_task(
        record_security_event_job,
        payload.event_type,
        payload.metadata,
        user_id=user.user_id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        severity=payload.severity,
    )
    return ApiResponse(data=SecurityEventAccepted())


@router.get("", response_model=ApiResponse[list[SecurityEventRead]])
def get_security_events(
    event_type: str | None = Query(default=None),
    user_id: str | None = Query(default=None),
    since: datetime | None = Query(default=None),
    until: datetime | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    _: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> ApiResponse[list[SecurityEventRead]]:
    """Query security events by type, user and time range."""

    events = list_security_events(db, event_type=event_type, user_id=user_id, since=since, until=until, limit=limit)
    return ApiResponse(data=[SecurityEventRead.model_validate(event) for event in events])
