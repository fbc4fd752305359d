"""Caller identity and role checks for the HTTP boundary."""

from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException

from crm_reconcile.config import get_settings


@dataclass(frozen=True, slots=True)
class CurrentUser:
    user_id: str
    is_admin: bool = False


def get_current_user(x_user_id: str | None = Header(default=None)) -> CurrentUser:
    """Resolve the caller from the ``X-User-Id`` header set by the auth gateway."""

    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return CurrentUser(user_id=user_id, is_admin=user_id in get_settings().admin_user_ids)


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Administrative role required")
    return user
